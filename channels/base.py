"""
Provider Client base — shared infrastructure for outbound messaging providers.

Provides:
- ChannelError: structured error hierarchy
- ChannelMetrics: per-provider send/fail/latency tracking
- ProviderClient: abstract base wrapping every send with timing and metrics

Provider clients never retry. Retry bookkeeping belongs to the dispatch
worker so that attempts and backoff live on the job row.
"""
from __future__ import annotations

import abc
import time
from collections import deque
import structlog
from typing import Any

from models.schemas import ChannelType, ProviderRequest, ProviderResult

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all provider operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class ProviderTransportError(ChannelError):
    """Network failure or timeout talking to the provider."""

    def __init__(self, message: str, channel: str = ""):
        super().__init__(message, channel, retryable=True)


class ProviderNotConfiguredError(ChannelError):
    def __init__(self, channel: str = ""):
        super().__init__(f"Provider credentials missing for {channel}", channel)


# ══════════════════════════════════════════════════════════════
#  CHANNEL METRICS
# ══════════════════════════════════════════════════════════════

LATENCY_WINDOW = 500
RECENT_ERRORS = 10


class ChannelMetrics:
    """Tracks per-provider send, failure and latency metrics."""

    def __init__(self, channel: ChannelType):
        self.channel = channel
        self.messages_sent: int = 0
        self.messages_failed: int = 0
        self._latencies: deque[float] = deque(maxlen=LATENCY_WINDOW)
        self._errors: deque[str] = deque(maxlen=RECENT_ERRORS)

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error[:200])

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def failure_rate(self) -> float:
        total = self.messages_sent + self.messages_failed
        return self.messages_failed / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "sent": self.messages_sent,
            "failed": self.messages_failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": list(self._errors),
        }


# ══════════════════════════════════════════════════════════════
#  PROVIDER CLIENT — Abstract Base
# ══════════════════════════════════════════════════════════════

class ProviderClient(abc.ABC):
    """
    Base class for messaging provider clients.

    Subclasses implement _do_send for a fully formed request. The base class
    records latency and outcome, and turns ChannelError into a failed result.
    """

    channel_type: ChannelType

    def __init__(self):
        self._metrics = ChannelMetrics(self.channel_type)

    @abc.abstractmethod
    async def _do_send(self, request: ProviderRequest) -> ProviderResult:
        ...

    async def send(self, request: ProviderRequest) -> ProviderResult:
        start = time.monotonic()
        try:
            result = await self._do_send(request)
        except ChannelError as e:
            result = ProviderResult(ok=False, error=str(e))

        latency = (time.monotonic() - start) * 1000
        if result.ok:
            self._metrics.record_send(latency)
        else:
            self._metrics.record_failure(result.error)
            logger.warning("provider_send_failed",
                           channel=self.channel_type.value,
                           kind=request.kind,
                           status_code=result.status_code,
                           error=result.error[:500])
        return result

    async def health_check(self) -> dict[str, Any]:
        return {
            "channel": self.channel_type.value,
            "metrics": self._metrics.to_dict(),
        }

    async def close(self) -> None:
        pass
