"""LLM classification adapter over HTTP."""

from __future__ import annotations

import json

import httpx
import structlog

from .config import ClassifierConfig
from .exceptions import ClassificationError
from .models import DEFAULT_LABEL, ClassificationLabel
from .retry import with_retry

logger = structlog.get_logger()

SYSTEM_INSTRUCTION = (
    "You are an expert email classifier. Your task is to analyze the provided email "
    "text and categorize it into one of the following labels: "
    + ", ".join(label.value for label in ClassificationLabel)
    + "."
)


def build_request(text: str) -> dict:
    """Request body asking for a JSON object with a single ``category`` enum."""
    return {
        "systemInstruction": SYSTEM_INSTRUCTION,
        "input": text,
        "responseMimeType": "application/json",
        "responseSchema": {
            "type": "OBJECT",
            "properties": {
                "category": {
                    "type": "STRING",
                    "enum": [label.value for label in ClassificationLabel],
                }
            },
        },
    }


class ClassifierClient:
    """Maps email text to one :class:`ClassificationLabel`.

    Malformed or out-of-set responses degrade to ``DEFAULT_LABEL``.
    Transport failures (after retries) and HTTP error statuses raise
    :class:`ClassificationError`.
    """

    def __init__(self, config: ClassifierConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key is not None:
            headers["x-goog-api-key"] = self._config.api_key.get_secret_value()
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds),
            headers=headers,
        )
        logger.info("classifier_client_started", api_url=self._config.api_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("classifier_client_stopped")

    async def classify(self, text: str) -> ClassificationLabel:
        if self._client is None:
            raise AssertionError("Client not started")

        retry_decorator = with_retry(
            max_attempts=self._config.max_attempts,
            initial_wait_seconds=self._config.initial_wait_seconds,
            max_wait_seconds=self._config.max_wait_seconds,
            retryable_exceptions=(httpx.TransportError,),
        )

        @retry_decorator
        async def _post() -> httpx.Response:
            assert self._client is not None
            return await self._client.post(self._config.api_url, json=build_request(text))

        try:
            response = await _post()
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ClassificationError(f"{type(exc).__name__}: {exc}") from exc

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> ClassificationLabel:
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("classifier_response_not_json", body=response.text[:200])
            return DEFAULT_LABEL

        category = data.get("category") if isinstance(data, dict) else None
        label = ClassificationLabel.parse(category)
        if label is None:
            logger.error("classifier_unexpected_response", response=data)
            return DEFAULT_LABEL
        return label
