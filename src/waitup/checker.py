"""Single connection attempts against TCP and HTTP(S) targets."""

import socket
import ssl
import time
from typing import Iterator
from urllib.parse import urljoin, urlsplit

import requests

from .results import AttemptOutcome, FailureKind
from .targets import HttpTarget, Target, TcpTarget

MAX_REDIRECTS = 30
REDIRECT_STATUSES = (301, 302, 303, 307, 308)


def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Walks an exception, its cause/context chain and wrapped reasons."""
    seen = set()
    stack = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.append(current.__cause__)
        stack.append(current.__context__)
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            stack.append(reason)
        stack.extend(a for a in current.args if isinstance(a, BaseException))


def _classify_connection_error(exc: BaseException) -> FailureKind:
    causes = list(_iter_causes(exc))
    if any(isinstance(c, socket.gaierror) or type(c).__name__ == "NameResolutionError" for c in causes):
        return FailureKind.DNS_RESOLUTION
    if any(isinstance(c, ssl.SSLError) for c in causes):
        return FailureKind.TLS_ERROR
    if any(isinstance(c, ConnectionRefusedError) for c in causes):
        return FailureKind.CONNECTION_REFUSED
    if any(isinstance(c, socket.timeout) for c in causes):
        return FailureKind.CONNECTION_TIMEOUT
    return FailureKind.OTHER


class Checker:
    """Makes exactly one bounded attempt against a target.

    Implementations return an AttemptOutcome for every network failure and
    must be safe to call from several threads at once.
    """

    def check(self, target: Target, timeout: float) -> AttemptOutcome:
        raise NotImplementedError


class TargetChecker(Checker):
    def __init__(self, verify_tls: bool = True):
        self.verify_tls = verify_tls

    def check(self, target: Target, timeout: float) -> AttemptOutcome:
        if timeout <= 0:
            return AttemptOutcome.failed(FailureKind.CONNECTION_TIMEOUT, "no time left for an attempt")
        if isinstance(target, TcpTarget):
            return self.check_tcp_port(target.host, target.port, timeout)
        if isinstance(target, HttpTarget):
            return self.check_http_endpoint(target, timeout)
        raise TypeError(f"Unsupported target type: {type(target).__name__}")

    def check_tcp_port(self, host: str, port: int, timeout: float) -> AttemptOutcome:
        """Resolves host and tries each address in turn until one accepts.

        All addresses share the one attempt deadline.
        """
        deadline = time.monotonic() + timeout
        try:
            addresses = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except (socket.gaierror, UnicodeError) as e:
            return AttemptOutcome.failed(FailureKind.DNS_RESOLUTION, f"could not resolve {host}: {e}")

        if not addresses:
            return AttemptOutcome.failed(FailureKind.DNS_RESOLUTION, f"no addresses found for {host}")

        outcome = None
        for family, socktype, proto, _, sockaddr in addresses:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            sock = None
            try:
                sock = socket.socket(family, socktype, proto)
                sock.settimeout(remaining)
                sock.connect(sockaddr)
                return AttemptOutcome.succeeded()
            except socket.timeout:
                break
            except ConnectionRefusedError:
                outcome = AttemptOutcome.failed(FailureKind.CONNECTION_REFUSED,
                                                f"connection refused by {sockaddr[0]}:{port}")
            except OSError as e:
                outcome = AttemptOutcome.failed(FailureKind.OTHER, f"{sockaddr[0]}:{port}: {e.strerror or e}")
            finally:
                if sock is not None:
                    sock.close()

        if outcome is None:
            return AttemptOutcome.failed(FailureKind.CONNECTION_TIMEOUT,
                                         f"timed out after {timeout:.1f}s connecting to {host}:{port}")
        return outcome

    def _get(self, url: str, headers: dict, timeout: float) -> requests.Response:
        return requests.request(
            method="GET",
            url=url,
            headers=headers,
            timeout=timeout,
            allow_redirects=False,
            stream=True,
            verify=self.verify_tls,
        )

    def check_http_endpoint(self, target: HttpTarget, timeout: float) -> AttemptOutcome:
        """GETs the URL, following redirects, and compares the final status.

        Redirects are followed here rather than by requests so that every hop
        shares the one attempt deadline. A redirect whose own status is the
        expected one counts as success without being followed.
        """
        deadline = time.monotonic() + timeout
        url = target.url
        headers = target.header_dict()

        for _ in range(MAX_REDIRECTS + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return AttemptOutcome.failed(FailureKind.CONNECTION_TIMEOUT,
                                             f"no final response within {timeout:.1f}s from {target.url}")
            try:
                response = self._get(url, headers, remaining)
            except requests.exceptions.SSLError as e:
                return AttemptOutcome.failed(FailureKind.TLS_ERROR, str(e))
            except requests.exceptions.Timeout:
                return AttemptOutcome.failed(FailureKind.CONNECTION_TIMEOUT,
                                             f"no response within {timeout:.1f}s from {target.url}")
            except requests.exceptions.ConnectionError as e:
                return AttemptOutcome.failed(_classify_connection_error(e), str(e))
            except requests.RequestException as e:
                return AttemptOutcome.failed(FailureKind.OTHER, str(e))

            try:
                status = response.status_code
                location = response.headers.get("location") if status in REDIRECT_STATUSES else None
            finally:
                response.close()

            if status == target.expected_status:
                return AttemptOutcome.succeeded()
            if not location:
                return AttemptOutcome.unexpected_status(status, target.expected_status)

            next_url = urljoin(url, location)
            if urlsplit(next_url).hostname != urlsplit(url).hostname:
                # credentials stay with the original host, as requests does
                headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
            url = next_url

        return AttemptOutcome.failed(FailureKind.OTHER, f"more than {MAX_REDIRECTS} redirects from {target.url}")
