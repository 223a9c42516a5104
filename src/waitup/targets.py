"""Immutable descriptions of the endpoints waitup waits for."""

import ipaddress
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

from .errors import InvalidTargetError

MIN_HTTP_STATUS = 100
MAX_HTTP_STATUS = 599
MAX_HOSTNAME_LENGTH = 253
MAX_LABEL_LENGTH = 63

_LABEL_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_HEADER_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

Headers = Tuple[Tuple[str, str], ...]


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def validate_host(host: str) -> str:
    """Returns host unchanged if it is an IP literal or a well-formed hostname."""
    if not isinstance(host, str) or not host:
        raise InvalidTargetError("Hostname cannot be empty")
    if _is_ip_literal(host):
        return host
    if len(host) > MAX_HOSTNAME_LENGTH:
        raise InvalidTargetError(f"Hostname too long: {len(host)} characters (max {MAX_HOSTNAME_LENGTH})")

    for label in host.split("."):
        if not label:
            raise InvalidTargetError(f"Hostname '{host}' contains an empty label")
        if len(label) > MAX_LABEL_LENGTH:
            raise InvalidTargetError(f"Hostname label '{label}' is longer than {MAX_LABEL_LENGTH} characters")
        if label.startswith("-") or label.endswith("-"):
            raise InvalidTargetError(f"Hostname label '{label}' cannot start or end with a hyphen")
        if not _LABEL_RE.match(label):
            raise InvalidTargetError(f"Hostname '{host}' contains invalid characters")
    return host


def validate_port(port) -> int:
    if isinstance(port, bool) or not isinstance(port, int):
        raise InvalidTargetError(f"Invalid port: {port!r} (must be an integer)")
    if not 1 <= port <= 65535:
        raise InvalidTargetError(f"Invalid port: {port} (must be 1-65535)")
    return port


def _normalize_headers(headers) -> Headers:
    if headers is None:
        return ()
    items = headers.items() if isinstance(headers, Mapping) else headers

    seen = set()
    normalized = []
    for item in items:
        try:
            key, value = item
        except (TypeError, ValueError):
            raise InvalidTargetError(f"Invalid header entry: {item!r}") from None
        if not isinstance(key, str) or not key:
            raise InvalidTargetError("HTTP header name cannot be empty")
        if not _HEADER_NAME_RE.match(key):
            raise InvalidTargetError(f"Invalid HTTP header name: {key}")
        if not isinstance(value, str) or not value:
            raise InvalidTargetError(f"HTTP header '{key}' has an empty value")
        if key.lower() in seen:
            raise InvalidTargetError(f"Duplicate HTTP header: {key}")
        seen.add(key.lower())
        normalized.append((key, value))
    return tuple(normalized)


@dataclass(frozen=True)
class TcpTarget:
    """A raw TCP endpoint; ready once a connection is accepted."""

    host: str
    port: int

    def __post_init__(self):
        validate_host(self.host)
        validate_port(self.port)

    @property
    def display(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.display


@dataclass(frozen=True)
class HttpTarget:
    """An HTTP(S) endpoint; ready once a GET returns expected_status."""

    url: str
    expected_status: int = 200
    headers: Headers = ()

    def __post_init__(self):
        if not isinstance(self.url, str):
            raise InvalidTargetError(f"Invalid URL: {self.url!r}")
        try:
            parts = urlsplit(self.url)
            parts.port  # raises ValueError for a malformed port
        except ValueError as e:
            raise InvalidTargetError(f"Invalid URL '{self.url}': {e}") from e

        if parts.scheme not in ("http", "https"):
            raise InvalidTargetError(f"Unsupported URL scheme: {parts.scheme or '(none)'}")
        if not parts.hostname:
            raise InvalidTargetError(f"URL has no host: {self.url}")

        status = self.expected_status
        if isinstance(status, bool) or not isinstance(status, int) \
                or not MIN_HTTP_STATUS <= status <= MAX_HTTP_STATUS:
            raise InvalidTargetError(f"Invalid HTTP status code: {status!r}")

        object.__setattr__(self, "headers", _normalize_headers(self.headers))

    @property
    def display(self) -> str:
        return self.url

    def header_dict(self) -> dict:
        return dict(self.headers)

    def __str__(self) -> str:
        return self.display


Target = Union[TcpTarget, HttpTarget]


def parse_header(text: str) -> Tuple[str, str]:
    """Parses a 'Key: Value' string."""
    if ":" not in text:
        raise InvalidTargetError(f"Invalid header format '{text}': expected 'Key: Value'")
    key, value = text.split(":", 1)
    return key.strip(), value.strip()


def parse_target(text: str, expected_status: int = 200,
                 headers: Optional[Iterable[Tuple[str, str]]] = None) -> Target:
    """Builds a target from host:port, [ipv6]:port or an http(s):// URL.

    expected_status and headers only apply to HTTP targets.
    """
    text = text.strip()
    if text.startswith("http://") or text.startswith("https://"):
        return HttpTarget(text, expected_status, tuple(headers or ()))

    if text.startswith("["):
        host, sep, port_str = text[1:].partition("]:")
        if not sep:
            raise InvalidTargetError(f"Invalid target format '{text}': expected [ipv6]:port")
    else:
        host, sep, port_str = text.rpartition(":")
        if not sep:
            raise InvalidTargetError(
                f"Invalid target format '{text}': expected host:port or http(s)://host:port/path")

    if not port_str.isdigit():
        raise InvalidTargetError(f"Invalid port '{port_str}' in target '{text}'")
    return TcpTarget(host, int(port_str))
