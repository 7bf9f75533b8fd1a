"""
============================================================================
UPTIME MONITOR - PROTOCOL CHECKERS
============================================================================
One checker per resource type. Every checker turns a Resource into a
CheckResult and never raises: timeouts, refused connections, bad
certificates and unexpected errors all come back as ``down`` results
carrying an error message.

Architecture
------------
CheckerRegistry           ← closed mapping ResourceType → checker
└── BaseChecker.check()   ← deadline (asyncio.wait_for) + error boundary
    ├── HTTPChecker       ← GET via httpx (http / https / health)
    ├── TCPChecker        ← asyncio.open_connection
    ├── TLSChecker        ← peer certificate parsed with cryptography
    ├── DNSChecker        ← dns.asyncresolver
    ├── WebSocketChecker  ← aiohttp ws_connect handshake
    └── ICMPChecker       ← ping3 echo probes in a worker thread

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import contextlib
import ipaddress
import ssl
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp
import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx
import ping3
from cryptography import x509
from cryptography.x509.oid import NameOID

from config.constants import CheckStatus, Defaults, ResourceType
from config.settings import MonitoringSettings
from exceptions import (
    ConfigurationError,
    DNSResolutionError,
    HTTPStatusError,
    KeywordMismatchError,
    ProbeConnectionError,
    ProbeException,
    ProbeTimeoutError,
    TLSCertificateError,
)
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Checkers")


# ============================================================================
# CHECK RESULT
# ============================================================================

class CheckResult:
    """
    Value object carrying the outcome of a single probe back to the
    recorder.
    """
    __slots__ = ("status", "response_time", "status_code", "error_message", "details")

    def __init__(
        self,
        status: CheckStatus,
        response_time: Optional[float] = None,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status = CheckStatus(status)
        self.response_time = response_time
        self.status_code = status_code
        self.error_message = error_message
        self.details = details

    @classmethod
    def up(cls, response_time: Optional[float] = None, **kwargs: Any) -> "CheckResult":
        return cls(CheckStatus.UP, response_time=response_time, **kwargs)

    @classmethod
    def down(cls, error_message: str, response_time: Optional[float] = None, **kwargs: Any) -> "CheckResult":
        if error_message and len(error_message) > Defaults.ERROR_MESSAGE_MAX_LENGTH:
            error_message = error_message[:Defaults.ERROR_MESSAGE_MAX_LENGTH]
        return cls(CheckStatus.DOWN, response_time=response_time, error_message=error_message, **kwargs)

    @property
    def is_up(self) -> bool:
        return self.status == CheckStatus.UP

    def to_dict(self) -> Dict[str, Any]:
        data = {slot: getattr(self, slot) for slot in self.__slots__}
        data["status"] = self.status.value
        return data

    def __repr__(self) -> str:
        return f"<CheckResult({self.status.value}, {self.response_time}ms, error={self.error_message!r})>"


# ============================================================================
# URL HELPERS
# ============================================================================

def parse_host_port(url: str, default_port: int) -> Tuple[str, int]:
    """
    Extract (host, port) from a URL or a literal ``host:port``.

    Scheme-derived defaults apply when the URL carries no port:
    https/wss/tls → 443, http/ws → 80, anything else → default_port.
    """
    raw = url.strip()
    if "://" not in raw:
        raw = f"//{raw}"
    parts = urlsplit(raw)

    host = parts.hostname
    if not host:
        raise ProbeException(f"Cannot parse host from {url!r}", target=url)

    try:
        port = parts.port
    except ValueError as e:
        raise ProbeException(f"Invalid port in {url!r}", target=url) from e

    if port is None:
        scheme = parts.scheme.lower()
        if scheme in ("https", "wss", "tls"):
            port = 443
        elif scheme in ("http", "ws"):
            port = 80
        else:
            port = default_port
    return host, port


def extract_hostname(url: str) -> str:
    """Bare hostname from a URL or a literal host."""
    return parse_host_port(url, Defaults.TCP_DEFAULT_PORT)[0]


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


# ============================================================================
# BASE CHECKER
# ============================================================================

class BaseChecker:
    """
    Template for protocol checkers.

    ``check()`` runs ``_probe()`` under the resource deadline and converts
    every failure into a ``down`` result. Subclasses implement ``_probe``,
    returning a CheckResult or raising a ProbeException.
    """

    name = "base"

    def __init__(self, settings: MonitoringSettings):
        self.settings = settings

    def timeout_ms(self, resource) -> int:
        return int(resource.timeout or self.settings.default_timeout_ms)

    async def check(self, resource) -> CheckResult:
        """
        Probe *resource* within its deadline.

        Parameters
        ----------
        resource : Resource
            The stored resource to probe.

        Returns
        -------
        CheckResult
            ``up`` or ``down``; never raises for probe failures.
        """
        timeout_ms = self.timeout_ms(resource)
        start_time = time.perf_counter()

        try:
            result = await asyncio.wait_for(
                self._probe(resource, timeout_ms),
                timeout=timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            logger.debug(f"[{self.name}] {resource.url} → timed out after {timeout_ms}ms")
            return CheckResult.down(
                str(ProbeTimeoutError(timeout_ms=timeout_ms)),
                response_time=_elapsed_ms(start_time),
            )
        except ProbeException as e:
            logger.debug(f"[{self.name}] {resource.url} → {e}")
            return CheckResult.down(
                str(e),
                response_time=_elapsed_ms(start_time),
                status_code=e.status_code,
            )
        except Exception as e:
            logger.warning(f"[{self.name}] {resource.url} → unexpected {type(e).__name__}: {e}")
            return CheckResult.down(
                str(e) or type(e).__name__,
                response_time=_elapsed_ms(start_time),
            )

        if result.response_time is None:
            result.response_time = _elapsed_ms(start_time)
        return result

    async def _probe(self, resource, timeout_ms: int) -> CheckResult:
        raise NotImplementedError


# ============================================================================
# HTTP CHECKER
# ============================================================================

class HTTPChecker(BaseChecker):
    """
    HTTP / HTTPS / health checks using an httpx async client.

    • Follows up to ``max_redirects`` redirects
    • Up iff the final status is in [200, 400)
    • Optional keyword must appear in the response body
    • Per-resource custom headers are sent with the request
    """

    name = "HTTP"

    def __init__(
        self,
        settings: MonitoringSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings)
        self._transport = transport

    def _headers(self, resource) -> Dict[str, str]:
        headers = {"User-Agent": self.settings.user_agent}
        custom: Optional[Mapping[str, Any]] = resource.http_headers
        if custom:
            headers.update({str(k): str(v) for k, v in custom.items()})
        return headers

    async def _probe(self, resource, timeout_ms: int) -> CheckResult:
        timeout = timeout_ms / 1000
        start_time = time.perf_counter()

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                follow_redirects=True,
                max_redirects=self.settings.max_redirects,
                transport=self._transport,
            ) as client:
                response = await client.get(resource.url, headers=self._headers(resource))
        except httpx.TooManyRedirects as e:
            raise ProbeException(
                f"Too many redirects (max {self.settings.max_redirects})",
                target=resource.url
            ) from e
        except httpx.TimeoutException as e:
            raise ProbeTimeoutError(timeout_ms=timeout_ms, target=resource.url) from e
        except httpx.ConnectError as e:
            raise ProbeConnectionError(
                f"Connection error: {str(e)[:200] or 'connection refused'}",
                target=resource.url
            ) from e
        except httpx.HTTPError as e:
            raise ProbeException(
                f"HTTP error: {str(e)[:200] or type(e).__name__}",
                target=resource.url
            ) from e

        elapsed = _elapsed_ms(start_time)
        status_code = response.status_code

        if not 200 <= status_code < 400:
            raise HTTPStatusError(status_code, target=resource.url)

        keyword = resource.http_keyword
        if keyword and keyword not in response.text:
            raise KeywordMismatchError(keyword, status_code=status_code, target=resource.url)

        details = None
        if response.history:
            details = {"final_url": str(response.url), "redirects": len(response.history)}

        logger.debug(f"[HTTP] {resource.url} → {status_code} in {elapsed:.0f}ms")
        return CheckResult.up(elapsed, status_code=status_code, details=details)


# ============================================================================
# TCP CHECKER
# ============================================================================

class TCPChecker(BaseChecker):
    """
    Raw TCP connect check.

    The URL is ``tcp://host:port`` or just ``host:port``; without a
    port the scheme default applies, falling back to 80.
    """

    name = "TCP"

    async def _probe(self, resource, timeout_ms: int) -> CheckResult:
        host, port = parse_host_port(resource.url, Defaults.TCP_DEFAULT_PORT)
        start_time = time.perf_counter()

        try:
            _, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise ProbeConnectionError(
                f"TCP connection to {host}:{port} failed: {e.strerror or e}",
                target=f"{host}:{port}"
            ) from e

        elapsed = _elapsed_ms(start_time)
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()

        logger.debug(f"[TCP] {host}:{port} → connected in {elapsed:.0f}ms")
        return CheckResult.up(elapsed, details={"host": host, "port": port})


# ============================================================================
# TLS CHECKER
# ============================================================================

def hostname_matches(pattern: str, hostname: str) -> bool:
    """
    Match a certificate name against a hostname.

    A leading ``*.`` wildcard covers exactly one label.
    """
    pattern = pattern.lower().rstrip(".")
    hostname = hostname.lower().rstrip(".")

    if pattern.startswith("*."):
        head, _, tail = hostname.partition(".")
        return bool(head) and tail == pattern[2:]
    return pattern == hostname


def certificate_names(cert: x509.Certificate) -> Tuple[List[str], List[str]]:
    """(DNS names, IP addresses) from the SAN extension, CN when SAN is absent."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        common_names = [
            attr.value for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        ]
        return [str(name) for name in common_names], []

    dns_names = san.get_values_for_type(x509.DNSName)
    ip_addresses = [str(ip) for ip in san.get_values_for_type(x509.IPAddress)]
    return dns_names, ip_addresses


def evaluate_certificate(
    der: bytes,
    hostname: str,
    cert_expiry_days: int,
    now: Optional[datetime] = None,
) -> CheckResult:
    """
    Turn a DER certificate into a TLS check result.

    Up iff the certificate is inside its validity period, has more than
    zero whole days remaining and matches ``hostname``. Expiring soon
    (days remaining within ``cert_expiry_days``) is reported in details
    but stays ``up``.
    """
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise TLSCertificateError(f"Unable to parse certificate: {e}", target=hostname) from e

    now = now or TimeHelper.get_utc_now()
    valid_from = TimeHelper.to_naive_utc(cert.not_valid_before_utc)
    valid_to = TimeHelper.to_naive_utc(cert.not_valid_after_utc)
    # whole days left, rounded down
    days_remaining = (valid_to - now).days

    dns_names, ip_addresses = certificate_names(cert)
    try:
        ip = str(ipaddress.ip_address(hostname))
        hostname_match = ip in ip_addresses
    except ValueError:
        hostname_match = any(hostname_matches(name, hostname) for name in dns_names)

    details = {
        "issuer": cert.issuer.rfc4514_string(),
        "subject": cert.subject.rfc4514_string(),
        "valid_from": valid_from.isoformat(),
        "valid_to": valid_to.isoformat(),
        "days_remaining": days_remaining,
        "hostname_match": hostname_match,
        "cert_expiry_days": cert_expiry_days,
        "expiring_soon": days_remaining <= cert_expiry_days,
    }

    if now >= valid_to:
        return CheckResult.down(f"Certificate expired on {valid_to:%Y-%m-%d}", details=details)
    if now < valid_from:
        return CheckResult.down(f"Certificate not valid until {valid_from:%Y-%m-%d}", details=details)
    if days_remaining <= 0:
        return CheckResult.down("Certificate expires within 24 hours", details=details)
    if not hostname_match:
        return CheckResult.down(f"Certificate does not match hostname {hostname}", details=details)

    return CheckResult.up(details=details)


class TLSChecker(BaseChecker):
    """
    Connects to a TLS endpoint and inspects the peer certificate.

    The handshake does not verify the chain so that expired or
    self-signed certificates can still be reported on.
    """

    name = "TLS"

    async def fetch_certificate(self, host: str, port: int) -> bytes:
        """Complete a TLS handshake and return the peer certificate (DER)."""
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        try:
            _, writer = await asyncio.open_connection(
                host, port, ssl=context, server_hostname=host
            )
        except ssl.SSLError as e:
            raise TLSCertificateError(f"TLS handshake failed: {e}", target=f"{host}:{port}") from e
        except OSError as e:
            raise ProbeConnectionError(
                f"Connection to {host}:{port} failed: {e.strerror or e}",
                target=f"{host}:{port}"
            ) from e

        try:
            ssl_object = writer.get_extra_info("ssl_object")
            der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        finally:
            writer.close()
            with contextlib.suppress(OSError, ssl.SSLError):
                await writer.wait_closed()

        if not der:
            raise TLSCertificateError("Server did not present a certificate", target=f"{host}:{port}")
        return der

    async def _probe(self, resource, timeout_ms: int) -> CheckResult:
        host, port = parse_host_port(resource.url, Defaults.TLS_DEFAULT_PORT)
        start_time = time.perf_counter()

        der = await self.fetch_certificate(host, port)
        elapsed = _elapsed_ms(start_time)

        threshold = resource.cert_expiry_days
        if threshold is None:
            threshold = Defaults.CERT_EXPIRY_DAYS

        result = evaluate_certificate(der, host, threshold)
        result.response_time = elapsed

        logger.debug(
            f"[TLS] {host}:{port} → days_left={result.details['days_remaining']}, "
            f"match={result.details['hostname_match']}, status={result.status.value}"
        )
        return result


# ============================================================================
# DNS CHECKER
# ============================================================================

class DNSChecker(BaseChecker):
    """
    Resolves the resource hostname and measures resolution latency.

    Up iff resolution returns an answer (A, falling back to AAAA),
    regardless of how many addresses come back.
    """

    name = "DNS"

    async def _probe(self, resource, timeout_ms: int) -> CheckResult:
        domain = extract_hostname(resource.url)
        resolver = dns.asyncresolver.Resolver()
        resolver.lifetime = timeout_ms / 1000
        start_time = time.perf_counter()

        answer = None
        record_type = "A"
        try:
            for record_type in ("A", "AAAA"):
                try:
                    answer = await resolver.resolve(domain, record_type)
                    break
                except dns.resolver.NoAnswer:
                    continue
        except dns.resolver.NXDOMAIN as e:
            raise DNSResolutionError(f"Domain {domain} does not exist (NXDOMAIN)", target=domain) from e
        except dns.exception.Timeout as e:
            raise ProbeTimeoutError(timeout_ms=timeout_ms, target=domain) from e
        except dns.exception.DNSException as e:
            raise DNSResolutionError(f"DNS resolution failed: {e}", target=domain) from e

        if answer is None:
            raise DNSResolutionError(f"No address records for {domain}", target=domain)

        elapsed = _elapsed_ms(start_time)
        addresses = [rdata.to_text() for rdata in answer]

        logger.debug(f"[DNS] {domain} ({record_type}) → {addresses} in {elapsed:.0f}ms")
        return CheckResult.up(
            elapsed,
            details={"record_type": record_type, "addresses": addresses},
        )


# ============================================================================
# WEBSOCKET CHECKER
# ============================================================================

class WebSocketChecker(BaseChecker):
    """
    Performs a WebSocket opening handshake with aiohttp.

    Up iff the handshake completes; the connection is closed cleanly
    right after.
    """

    name = "WebSocket"

    async def _probe(self, resource, timeout_ms: int) -> CheckResult:
        start_time = time.perf_counter()
        headers = dict(resource.http_headers) if resource.http_headers else None

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=timeout_ms / 1000)
            ) as session:
                async with session.ws_connect(resource.url, headers=headers) as ws:
                    elapsed = _elapsed_ms(start_time)
                    protocol = ws.protocol
        except aiohttp.WSServerHandshakeError as e:
            raise ProbeException(
                f"WebSocket handshake failed: HTTP {e.status}",
                target=resource.url,
                status_code=e.status
            ) from e
        except aiohttp.ClientConnectorError as e:
            raise ProbeConnectionError(f"Connection error: {e}", target=resource.url) from e
        except aiohttp.ClientError as e:
            raise ProbeException(f"WebSocket error: {e}", target=resource.url) from e

        logger.debug(f"[WebSocket] {resource.url} → handshake in {elapsed:.0f}ms")
        return CheckResult.up(elapsed, status_code=101, details={"protocol": protocol})


# ============================================================================
# ICMP CHECKER
# ============================================================================

class ICMPChecker(BaseChecker):
    """
    ICMP echo probes via ping3, run in a worker thread.

    ``icmp_count`` echo requests share the resource deadline. Up iff at
    least one reply arrives; the response time is the mean RTT.
    """

    name = "ICMP"

    async def _probe(self, resource, timeout_ms: int) -> CheckResult:
        host = extract_hostname(resource.url)
        count = max(1, self.settings.icmp_count)
        per_probe_timeout = (timeout_ms / 1000) / count
        start_time = time.perf_counter()

        rtts: List[float] = []
        for _ in range(count):
            rtt = await asyncio.to_thread(ping3.ping, host, timeout=per_probe_timeout, unit="ms")
            # ping3 returns None on timeout and False when the host cannot be resolved
            if rtt is False:
                raise DNSResolutionError(f"Cannot resolve host {host}", target=host)
            if rtt is not None:
                rtts.append(float(rtt))

        received = len(rtts)
        details = {
            "packets_sent": count,
            "packets_received": received,
            "packet_loss": round((count - received) / count * 100, 1),
        }

        if not rtts:
            return CheckResult.down(
                f"No ICMP reply from {host}",
                response_time=_elapsed_ms(start_time),
                details=details,
            )

        response_time = round(sum(rtts) / received, 2)
        logger.debug(f"[ICMP] {host} → {received}/{count} replies, avg {response_time}ms")
        return CheckResult.up(response_time, details=details)


# ============================================================================
# CHECKER REGISTRY
# ============================================================================

class CheckerRegistry:
    """
    Closed mapping from every ResourceType to its checker.

    Construction fails with ConfigurationError when any type is left
    without a checker. Unknown stored types resolve to HTTP.
    """

    def __init__(
        self,
        settings: MonitoringSettings,
        checkers: Optional[Mapping[ResourceType, BaseChecker]] = None,
    ):
        if checkers is None:
            http = HTTPChecker(settings)
            checkers = {
                ResourceType.HTTP: http,
                ResourceType.HTTPS: http,
                ResourceType.HEALTH: http,
                ResourceType.TCP: TCPChecker(settings),
                ResourceType.TLS: TLSChecker(settings),
                ResourceType.DNS: DNSChecker(settings),
                ResourceType.WEBSOCKET: WebSocketChecker(settings),
                ResourceType.ICMP: ICMPChecker(settings),
            }

        missing = [member.value for member in ResourceType if member not in checkers]
        if missing:
            raise ConfigurationError(
                f"No checker registered for resource types: {', '.join(missing)}",
                config_key="checkers"
            )

        self._checkers: Dict[ResourceType, BaseChecker] = dict(checkers)

    def get(self, resource_type: Any) -> BaseChecker:
        return self._checkers[ResourceType.parse(resource_type)]

    async def probe(self, resource) -> CheckResult:
        """Probe a resource with the checker for its type."""
        return await self.get(resource.type).check(resource)
