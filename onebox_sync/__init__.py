"""onebox-sync: real-time IMAP mailbox mirroring into Elasticsearch.

Public API re-exported here for convenience::

    from onebox_sync import OneboxConfig, OneboxService
"""

from .classifier import ClassifierClient
from .config import (
    ApiConfig,
    ClassifierConfig,
    ElasticsearchConfig,
    ImapConfig,
    NotifierConfig,
    OneboxConfig,
    PipelineConfig,
    SessionConfig,
)
from .exceptions import (
    AuthError,
    CapabilityError,
    ClassificationError,
    NetworkError,
    NotificationError,
    OneboxError,
    ParseError,
    StoreError,
)
from .fetcher import MessageFetcher
from .imap_client import AsyncImapClient
from .models import (
    DEFAULT_LABEL,
    TRIGGER_LABEL,
    ClassificationLabel,
    EmailRecord,
    RawMessageHandle,
    SessionState,
)
from .notifier import NotificationFanout, NotificationSink
from .pipeline import ProcessingPipeline
from .service import OneboxService
from .session import MailboxSession
from .store import RecordStore

__all__ = [
    "DEFAULT_LABEL",
    "TRIGGER_LABEL",
    "ApiConfig",
    "AsyncImapClient",
    "AuthError",
    "CapabilityError",
    "ClassificationError",
    "ClassificationLabel",
    "ClassifierClient",
    "ClassifierConfig",
    "ElasticsearchConfig",
    "EmailRecord",
    "ImapConfig",
    "MailboxSession",
    "MessageFetcher",
    "NetworkError",
    "NotificationError",
    "NotificationFanout",
    "NotificationSink",
    "NotifierConfig",
    "OneboxConfig",
    "OneboxError",
    "OneboxService",
    "ParseError",
    "PipelineConfig",
    "ProcessingPipeline",
    "RawMessageHandle",
    "RecordStore",
    "SessionConfig",
    "SessionState",
    "StoreError",
]
