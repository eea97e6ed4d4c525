"""Entry point for the sync service.

Usage::

    python -m onebox_sync          # mailbox session + pipeline + search API
    python -m onebox_sync api      # search API only
"""

from __future__ import annotations

import asyncio
import sys


def main() -> None:
    mode = sys.argv[1] if len(sys.argv) > 1 else "sync"
    if mode not in ("sync", "api"):
        print("Usage: python -m onebox_sync [sync|api]", file=sys.stderr)
        sys.exit(1)

    if mode == "sync":
        from .config import OneboxConfig
        from .exceptions import AuthError, CapabilityError, NetworkError
        from .service import OneboxService

        config = OneboxConfig()
        service = OneboxService(config)
        try:
            asyncio.run(service.run())
        except* (AuthError, CapabilityError, NetworkError):
            sys.exit(2)

    elif mode == "api":
        import uvicorn

        from .api import create_app
        from .config import ApiConfig
        from .logging import setup_logging
        from .store import RecordStore

        settings = ApiConfig()
        setup_logging(json=settings.log_json, level=settings.log_level)
        app = create_app(RecordStore(settings.elasticsearch))
        uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level="warning")


if __name__ == "__main__":
    main()
