from __future__ import annotations

from collections import Counter
from statistics import mean
from threading import Lock


class _TurnTelemetryStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._latencies_ms: list[float] = []
        self.total_turn_requests: int = 0
        self.committed_turns: int = 0
        self.failed_turns: int = 0
        self.recoveries: int = 0
        self.fast_recoveries: int = 0
        self.conflicts: int = 0
        self.soft_repairs: int = 0
        self.idempotent_replays: int = 0
        self.attempt_histogram: Counter[int] = Counter()
        self.error_codes: Counter[str] = Counter()

    def reset(self) -> None:
        with self._lock:
            self._latencies_ms = []
            self.total_turn_requests = 0
            self.committed_turns = 0
            self.failed_turns = 0
            self.recoveries = 0
            self.fast_recoveries = 0
            self.conflicts = 0
            self.soft_repairs = 0
            self.idempotent_replays = 0
            self.attempt_histogram = Counter()
            self.error_codes = Counter()

    def record_success(
        self,
        *,
        latency_ms: float,
        attempts: int,
        recovery_used: bool,
        fast_recovery: bool,
        soft_repaired: bool,
    ) -> None:
        with self._lock:
            self.total_turn_requests += 1
            self.committed_turns += 1
            self._latencies_ms.append(float(latency_ms))
            if len(self._latencies_ms) > 1000:
                self._latencies_ms = self._latencies_ms[-1000:]
            self.attempt_histogram[int(attempts)] += 1
            if recovery_used:
                self.recoveries += 1
            if fast_recovery:
                self.fast_recoveries += 1
            if soft_repaired:
                self.soft_repairs += 1

    def record_failure(self, *, error_code: str) -> None:
        with self._lock:
            self.total_turn_requests += 1
            self.failed_turns += 1
            self.error_codes[str(error_code)] += 1
            if str(error_code) == "turn_conflict":
                self.conflicts += 1

    def record_replay(self) -> None:
        with self._lock:
            self.idempotent_replays += 1

    def summary(self) -> dict:
        with self._lock:
            latencies = list(self._latencies_ms)
            committed = int(self.committed_turns)
            recovery_rate = 0.0 if committed <= 0 else float(self.recoveries) / float(committed)

            avg_latency = float(mean(latencies)) if latencies else 0.0
            p95_latency = 0.0
            if latencies:
                ordered = sorted(latencies)
                idx = max(0, min(len(ordered) - 1, round(0.95 * (len(ordered) - 1))))
                p95_latency = float(ordered[idx])

            return {
                "total_turn_requests": int(self.total_turn_requests),
                "committed_turns": committed,
                "failed_turns": int(self.failed_turns),
                "recoveries": int(self.recoveries),
                "fast_recoveries": int(self.fast_recoveries),
                "recovery_rate": round(recovery_rate, 4),
                "conflicts": int(self.conflicts),
                "soft_repairs": int(self.soft_repairs),
                "idempotent_replays": int(self.idempotent_replays),
                "attempt_histogram": {str(k): v for k, v in sorted(self.attempt_histogram.items())},
                "error_codes": dict(self.error_codes),
                "avg_turn_latency_ms": round(avg_latency, 3),
                "p95_turn_latency_ms": round(p95_latency, 3),
            }


_turn_telemetry = _TurnTelemetryStore()


def reset_turn_telemetry() -> None:
    _turn_telemetry.reset()


def record_turn_success(
    *,
    latency_ms: float,
    attempts: int,
    recovery_used: bool,
    fast_recovery: bool = False,
    soft_repaired: bool = False,
) -> None:
    _turn_telemetry.record_success(
        latency_ms=latency_ms,
        attempts=attempts,
        recovery_used=recovery_used,
        fast_recovery=fast_recovery,
        soft_repaired=soft_repaired,
    )


def record_turn_failure(*, error_code: str) -> None:
    _turn_telemetry.record_failure(error_code=error_code)


def record_turn_replay() -> None:
    _turn_telemetry.record_replay()


def get_turn_telemetry_summary() -> dict:
    return _turn_telemetry.summary()
