"""Language-model collaborator wrapper with deadlines and cancellation."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, TypeVar

from regchat.errors import (
    GenerationCancelled,
    GenerationFailure,
    GenerationTimeout,
    RateLimited,
    RegchatError,
)

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.05
_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate_limit", "ratelimit", "too many requests", "quota", "resource_exhausted")

T = TypeVar("T")


class CancellationToken:
    """Flag shared between a caller and the worker running its model call."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class LanguageModelClient:
    """Runs LangChain chat-model calls on worker threads.

    The caller waits until the call finishes, the deadline passes
    (`GenerationTimeout`) or the token is cancelled (`GenerationCancelled`).
    Streamed calls check the token between chunks and stop early.
    """

    def __init__(self, llm: Any, *, timeout_seconds: float = 30.0, max_workers: int = 4) -> None:
        self.llm = llm
        self.timeout_seconds = timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="regchat-llm")

    def generate(
        self,
        messages: list[Any],
        *,
        stream: bool = False,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> str:
        token = cancel_token or CancellationToken()
        if stream:
            future = self._pool.submit(self._stream, messages, token, on_token)
        else:
            future = self._pool.submit(self._invoke, messages)
        return wait_for(future, token, timeout or self.timeout_seconds)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def _invoke(self, messages: list[Any]) -> str:
        try:
            reply = self.llm.invoke(messages)
        except Exception as exc:  # provider SDKs raise their own error types
            raise _as_generation_error(exc) from exc
        return message_text(reply)

    def _stream(
        self,
        messages: list[Any],
        token: CancellationToken,
        on_token: Callable[[str], None] | None,
    ) -> str:
        parts: list[str] = []
        try:
            for piece in self.llm.stream(messages):
                if token.cancelled:
                    raise GenerationCancelled("stream cancelled")
                text = message_text(piece)
                parts.append(text)
                if on_token is not None:
                    on_token(text)
        except RegchatError:
            raise
        except Exception as exc:  # provider SDKs raise their own error types
            raise _as_generation_error(exc) from exc
        return "".join(parts)


def wait_for(future: Future[T], token: CancellationToken, timeout: float, *, cancel_on_timeout: bool = True) -> T:
    """Wait for a worker call until it finishes, the deadline passes or `token` is cancelled.

    On timeout `token` is cancelled too, so a streaming worker stops, unless
    `cancel_on_timeout` is false because the token outlives this call.
    """

    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        try:
            return future.result(timeout=max(0.0, min(_POLL_SECONDS, remaining)))
        except FutureTimeout:
            if token.cancelled:
                future.cancel()
                raise GenerationCancelled("superseded by a newer request") from None
            if time.monotonic() >= deadline:
                if cancel_on_timeout:
                    token.cancel()
                future.cancel()
                logger.warning("Worker call exceeded %.1fs deadline", timeout)
                raise GenerationTimeout(f"no response within {timeout:.1f}s") from None


def message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)


def is_rate_limit_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return getattr(exc, "status_code", None) == 429 or any(marker in message for marker in _RATE_LIMIT_MARKERS)


def _as_generation_error(exc: Exception) -> GenerationFailure:
    if is_rate_limit_error(exc):
        return RateLimited(str(exc))
    return GenerationFailure(str(exc))
