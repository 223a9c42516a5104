"""Wait configuration, cancellation handle and duration parsing."""

import math
import re
import threading
import weakref
from dataclasses import dataclass, field, fields, replace as dc_replace
from enum import Enum
from typing import Optional

from .errors import InvalidConfigError

DEFAULT_TIMEOUT = 30.0
DEFAULT_INITIAL_INTERVAL = 1.0
DEFAULT_MAX_INTERVAL = 30.0
DEFAULT_CONNECTION_TIMEOUT = 10.0

_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


class Strategy(str, Enum):
    ALL = "all"
    ANY = "any"


class CancellationToken:
    """Thread-safe cooperative cancellation flag.

    Children created with child() are cancelled together with their parent,
    but cancelling a child leaves the parent untouched.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children = weakref.WeakSet()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks up to timeout seconds; returns True if cancelled."""
        return self._event.wait(timeout)

    def child(self) -> "CancellationToken":
        token = CancellationToken()
        with self._lock:
            if not self._event.is_set():
                self._children.add(token)
                return token
        token.cancel()
        return token

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled()})"


def parse_duration(text: str) -> float:
    """Parses '30', '500ms', '1.5s', '2m' or '1m30s' into seconds."""
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)

    value = str(text).strip()
    if not value:
        raise InvalidConfigError("Invalid duration '': empty value")

    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise InvalidConfigError(f"Invalid duration '{value}': must be finite")
        return seconds

    total = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(value) or pos == 0:
        raise InvalidConfigError(f"Invalid duration '{value}': use a number of seconds or units ms, s, m, h")
    return total


def _check_duration(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfigError(f"{name} must be a number of seconds, got {value!r}")
    if not math.isfinite(value) or value < 0:
        raise InvalidConfigError(f"{name} must be a finite, non-negative number, got {value}")
    return float(value)


@dataclass(frozen=True)
class WaitConfig:
    """Validated settings for one wait operation.

    All durations are in seconds. The config is read-only once built and is
    shared by every per-target loop of an operation.
    """

    timeout: float = DEFAULT_TIMEOUT
    initial_interval: float = DEFAULT_INITIAL_INTERVAL
    max_interval: float = DEFAULT_MAX_INTERVAL
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    max_retries: Optional[int] = None
    strategy: Strategy = Strategy.ALL
    cancellation: Optional[CancellationToken] = field(default=None, compare=False)

    def __post_init__(self):
        for f in ("timeout", "initial_interval", "max_interval", "connection_timeout"):
            object.__setattr__(self, f, _check_duration(f, getattr(self, f)))

        if self.max_interval < self.initial_interval:
            raise InvalidConfigError(
                f"max_interval ({self.max_interval}s) must be >= initial_interval ({self.initial_interval}s)")

        if self.max_retries is not None:
            if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int) \
                    or self.max_retries < 1:
                raise InvalidConfigError(f"max_retries must be a positive integer, got {self.max_retries!r}")

        try:
            object.__setattr__(self, "strategy", Strategy(self.strategy))
        except ValueError:
            raise InvalidConfigError(f"Unknown strategy: {self.strategy!r}") from None

        if self.cancellation is not None and not isinstance(self.cancellation, CancellationToken):
            raise InvalidConfigError("cancellation must be a CancellationToken")

    @property
    def wait_for_any(self) -> bool:
        return self.strategy is Strategy.ANY

    def replace(self, **changes) -> "WaitConfig":
        """Returns a validated copy with the given fields changed."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise InvalidConfigError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        return dc_replace(self, **changes)

    @classmethod
    def local_dev(cls, **overrides) -> "WaitConfig":
        """Fast feedback against services on the developer machine."""
        return cls(**{**dict(timeout=10.0, initial_interval=0.1, max_interval=1.0,
                             connection_timeout=2.0, max_retries=50), **overrides})

    @classmethod
    def ci_cd(cls, **overrides) -> "WaitConfig":
        return cls(**{**dict(timeout=60.0, initial_interval=0.5, max_interval=5.0,
                             connection_timeout=10.0, max_retries=30), **overrides})

    @classmethod
    def docker(cls, **overrides) -> "WaitConfig":
        """Container startup can be slow; no retry ceiling."""
        return cls(**{**dict(timeout=300.0, initial_interval=2.0, max_interval=30.0,
                             connection_timeout=15.0, max_retries=None), **overrides})

    @classmethod
    def production(cls, **overrides) -> "WaitConfig":
        return cls(**{**dict(timeout=120.0, initial_interval=1.0, max_interval=30.0,
                             connection_timeout=30.0, max_retries=20), **overrides})

    @classmethod
    def microservices(cls, **overrides) -> "WaitConfig":
        return cls(**{**dict(timeout=90.0, initial_interval=0.5, max_interval=10.0,
                             connection_timeout=5.0, max_retries=40), **overrides})
