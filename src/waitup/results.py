"""Outcomes of single attempts and the records a wait operation returns."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .targets import Target


class FailureKind(str, Enum):
    DNS_RESOLUTION = "dns_resolution"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMEOUT = "connection_timeout"
    TLS_ERROR = "tls_error"
    UNEXPECTED_STATUS = "unexpected_status"
    CANCELLED = "cancelled"
    OTHER = "other"


class ExhaustionReason(str, Enum):
    TIMEOUT = "timeout"
    RETRY_LIMIT_REACHED = "retry_limit_reached"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one connection attempt. kind is None on success."""

    kind: Optional[FailureKind] = None
    detail: Optional[str] = None
    actual_status: Optional[int] = None
    expected_status: Optional[int] = None

    @classmethod
    def succeeded(cls) -> "AttemptOutcome":
        return cls()

    @classmethod
    def failed(cls, kind: FailureKind, detail: str) -> "AttemptOutcome":
        return cls(kind=kind, detail=detail)

    @classmethod
    def unexpected_status(cls, actual: int, expected: int) -> "AttemptOutcome":
        return cls(kind=FailureKind.UNEXPECTED_STATUS,
                   detail=f"expected status {expected}, got {actual}",
                   actual_status=actual, expected_status=expected)

    @property
    def success(self) -> bool:
        return self.kind is None

    def describe(self) -> str:
        if self.success:
            return "ok"
        label = self.kind.value.replace("_", " ")
        return f"{label}: {self.detail}" if self.detail else label


def _to_ms(seconds: float) -> int:
    return int(round(seconds * 1000))


@dataclass(frozen=True)
class TargetResult:
    """Terminal record for one target: produced once, never updated."""

    target: Target
    success: bool
    elapsed: float
    attempts: int
    last_failure: Optional[AttemptOutcome] = None
    reason: Optional[ExhaustionReason] = None

    @property
    def error(self) -> Optional[str]:
        if self.success:
            return None

        if self.reason is ExhaustionReason.TIMEOUT:
            message = f"Timeout after {self.elapsed:.1f}s"
        elif self.reason is ExhaustionReason.RETRY_LIMIT_REACHED:
            message = f"Retry limit reached after {self.attempts} attempts"
        elif self.reason is ExhaustionReason.CANCELLED:
            message = "Cancelled"
        else:
            message = "Failed"

        if self.last_failure is not None and self.last_failure.kind is not FailureKind.CANCELLED:
            message += f" (last error: {self.last_failure.describe()})"
        return message

    @property
    def error_kind(self) -> Optional[FailureKind]:
        return self.last_failure.kind if self.last_failure else None

    def to_dict(self) -> dict:
        return {
            "target": self.target.display,
            "success": self.success,
            "elapsed_ms": _to_ms(self.elapsed),
            "attempts": self.attempts,
            "error": self.error,
            "reason": self.reason.value if self.reason else None,
        }


@dataclass(frozen=True)
class WaitResult:
    """Aggregate result; targets are in input order."""

    success: bool
    elapsed: float
    attempts: int
    targets: Tuple[TargetResult, ...] = ()

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def failed(self) -> Tuple[TargetResult, ...]:
        return tuple(r for r in self.targets if not r.success)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "elapsed_ms": _to_ms(self.elapsed),
            "total_attempts": self.attempts,
            "targets": [r.to_dict() for r in self.targets],
        }
