"""HTTP client for the external review model.

Posts a chat-style prompt to the review endpoint and returns the model's
text reply.  HTTP 429 is retried with exponential backoff; any other
failure is raised so the caller can handle it at the node level.
"""

from __future__ import annotations

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .. import config

log = logging.getLogger(__name__)

AVAILABLE_MODELS = ("gemini-1.5-flash", "gemini-1.5-pro", "gemini-3-flash-preview")

_model = config.REVIEW_MODEL


def get_model() -> str:
    return _model


def set_model(name: str) -> None:
    global _model
    if name not in AVAILABLE_MODELS:
        raise ValueError(f"unknown review model {name!r}; expected one of {AVAILABLE_MODELS}")
    log.info("Review model: %s -> %s", _model, name)
    _model = name


class RateLimitedError(Exception):
    """The review endpoint answered 429."""


class ResponseParseError(ValueError):
    """The model reply was not the expected JSON array."""


class ReviewClient:
    def __init__(
        self,
        api_url: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url or config.REVIEW_API_URL
        self.timeout = timeout if timeout is not None else config.REVIEW_TIMEOUT_S
        self.max_attempts = max_attempts or config.REVIEW_MAX_ATTEMPTS
        self.backoff = backoff if backoff is not None else config.REVIEW_BACKOFF_S
        self._transport = transport

    async def complete(self, prompt: str, model: str | None = None) -> str:
        """Send *prompt* and return the reply text (``content`` or ``message``)."""
        payload = {
            "messages": [{"role": "user", "content": prompt}],
            "model": model or get_model(),
            "temperature": 0.1,
        }
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=30),
            retry=retry_if_exception_type(RateLimitedError),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                reply = await self._post(payload)
        return reply

    async def _post(self, payload: dict) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.api_url, json=payload)
            if resp.status_code == 429:
                raise RateLimitedError(f"rate limited by {self.api_url}")
            resp.raise_for_status()

        data = resp.json()
        reply = data.get("content") or data.get("message") or ""
        if not isinstance(reply, str):
            raise ResponseParseError(f"reply is {type(reply).__name__}, not text")
        return reply
