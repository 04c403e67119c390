import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from mira.logging_config import get_logger

logger = get_logger("analytics_service")

MAX_SAMPLES = 1000
DEFAULT_FLUSH_EVERY = 10
TOP_INTENTS = 5


@dataclass
class ResponseSample:
    timestamp: float
    duration_ms: float
    intent: str
    success: bool


@dataclass
class AnalyticsState:
    """Serializable counters; what gets persisted between restarts."""

    total_messages: int = 0
    unique_senders: set[str] = field(default_factory=set)
    intent_counts: dict[str, int] = field(default_factory=dict)
    success_count: int = 0
    fail_count: int = 0
    samples: list[ResponseSample] = field(default_factory=list)


class AnalyticsService:
    """Telemetry aggregator: counters, intent histogram and recent response times."""

    def __init__(
        self,
        flush_every: int = DEFAULT_FLUSH_EVERY,
        on_flush: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.flush_every = flush_every
        self.on_flush = on_flush
        self._clock = clock
        self._started_at = clock()
        self._total = 0
        self._senders: set[str] = set()
        self._intents: Counter = Counter()
        self._success = 0
        self._fail = 0
        self._samples: deque[ResponseSample] = deque(maxlen=MAX_SAMPLES)
        self._lock = threading.RLock()

    def record(self, sender: str, intent: str, duration_ms: float, success: bool = True) -> None:
        with self._lock:
            self._total += 1
            self._senders.add(sender)
            self._intents[intent] += 1
            if success:
                self._success += 1
            else:
                self._fail += 1
            self._samples.append(
                ResponseSample(timestamp=self._clock(), duration_ms=duration_ms, intent=intent, success=success)
            )
            due = self.flush_every > 0 and self._total % self.flush_every == 0

        if due and self.on_flush is not None:
            try:
                self.on_flush()
            except Exception as e:
                logger.error("Analytics flush failed", extra={"context": {"error": str(e)}})

    def snapshot(self) -> dict:
        with self._lock:
            durations = [s.duration_ms for s in self._samples]
            return {
                "total_messages": self._total,
                "unique_users": len(self._senders),
                "successful_requests": self._success,
                "failed_requests": self._fail,
                "popular_intents": self._intents.most_common(TOP_INTENTS),
                "average_response_time_ms": sum(durations) / len(durations) if durations else 0.0,
                "error_rate": (self._fail / self._total * 100) if self._total else 0.0,
                "uptime_seconds": max(0.0, self._clock() - self._started_at),
            }

    def export(self) -> AnalyticsState:
        with self._lock:
            return AnalyticsState(
                total_messages=self._total,
                unique_senders=set(self._senders),
                intent_counts=dict(self._intents),
                success_count=self._success,
                fail_count=self._fail,
                samples=list(self._samples),
            )

    def load(self, state: AnalyticsState) -> None:
        with self._lock:
            self._total = state.total_messages
            self._senders = set(state.unique_senders)
            self._intents = Counter(state.intent_counts)
            self._success = state.success_count
            self._fail = state.fail_count
            self._samples = deque(state.samples, maxlen=MAX_SAMPLES)

    @staticmethod
    def state_to_dict(state: AnalyticsState) -> dict:
        data = asdict(state)
        data["unique_senders"] = sorted(state.unique_senders)
        data["saved_at"] = datetime.now(timezone.utc).isoformat()
        return data

    @staticmethod
    def state_from_dict(data: dict) -> AnalyticsState:
        return AnalyticsState(
            total_messages=int(data.get("total_messages", 0)),
            unique_senders=set(data.get("unique_senders") or []),
            intent_counts={str(k): int(v) for k, v in (data.get("intent_counts") or {}).items()},
            success_count=int(data.get("success_count", 0)),
            fail_count=int(data.get("fail_count", 0)),
            samples=[ResponseSample(**sample) for sample in data.get("samples") or []],
        )
