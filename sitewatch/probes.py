"""Network probes: DNS resolution and TLS certificate inspection.

Both probes are diagnostic. They never raise; failures are captured in the
returned result so the page check can proceed independently.
"""

import ipaddress
import logging
import socket
import ssl
import time
from dataclasses import replace
from datetime import UTC, datetime
from urllib.parse import urlparse

import dns.exception
import dns.resolver
from cryptography import x509
from cryptography.x509.oid import NameOID

from .models import SSL_EXPIRY_WARNING_DAYS, DnsResult, TlsResult

logger = logging.getLogger(__name__)

# Probe timeouts are shorter than the page fetch so a slow probe
# cannot starve the per-site budget.
DEFAULT_PROBE_TIMEOUT = 5.0

NOT_HTTPS_MESSAGE = "Not an HTTPS URL"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _lookup(resolver: dns.resolver.Resolver, hostname: str, record_type: str) -> list[str]:
    answer = resolver.resolve(hostname, record_type)
    addresses: list[str] = []
    for rr in answer:
        text = str(rr or "").strip()
        if text:
            addresses.append(text)
    return addresses


def resolve_dns(
    hostname: str,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    resolver: dns.resolver.Resolver | None = None,
) -> DnsResult:
    """Resolve A and AAAA records for a hostname.

    The IPv6 lookup is attempted independently and its failure is ignored:
    many hosts have no AAAA records.

    Args:
        hostname: Host to resolve.
        timeout: Lifetime of each lookup in seconds.
        resolver: Resolver to use (a system-configured one by default).

    Returns:
        DnsResult; success reflects the IPv4 lookup.
    """
    start = time.monotonic()

    if not hostname:
        return DnsResult(success=False, resolution_time_ms=0, error="No hostname")

    try:
        literal = ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        literal = None
    if literal is not None:
        if literal.version == 4:
            return DnsResult(success=True, resolution_time_ms=0, ipv4_addresses=(str(literal),))
        return DnsResult(success=True, resolution_time_ms=0, ipv6_addresses=(str(literal),))

    if resolver is None:
        resolver = dns.resolver.Resolver(configure=True)
        resolver.timeout = timeout
        resolver.lifetime = timeout

    ipv4: list[str] = []
    ipv6: list[str] = []
    error: str | None = None

    try:
        ipv4 = _lookup(resolver, hostname, "A")
        if not ipv4:
            error = f"No IPv4 addresses found for {hostname}"
    except dns.resolver.NXDOMAIN:
        error = f"DNS resolution failed: {hostname} does not exist"
    except dns.resolver.NoAnswer:
        error = f"DNS resolution failed: no A records for {hostname}"
    except dns.exception.Timeout:
        error = f"DNS resolution timeout after {timeout}s"
    except dns.exception.DNSException as e:
        error = f"DNS resolution failed: {e}"

    try:
        ipv6 = _lookup(resolver, hostname, "AAAA")
    except dns.exception.DNSException as e:
        logger.debug("AAAA lookup for %s failed: %s", hostname, e)

    return DnsResult(
        success=error is None,
        resolution_time_ms=_elapsed_ms(start),
        ipv4_addresses=tuple(ipv4),
        ipv6_addresses=tuple(ipv6),
        error=error,
    )


def _name_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> str | None:
    attributes = name.get_attributes_for_oid(oid)
    if not attributes:
        return None
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8", "replace")


def tls_result_from_der(der: bytes, now: datetime | None = None) -> TlsResult:
    """Build a TlsResult from a DER-encoded certificate.

    Used when verification is disabled, since ssl.getpeercert() returns an
    empty dict for unverified peers.
    """
    cert = x509.load_der_x509_certificate(der)
    expires_at = cert.not_valid_after_utc
    now = now or datetime.now(UTC)
    issuer = _name_attribute(cert.issuer, NameOID.COMMON_NAME) or _name_attribute(
        cert.issuer, NameOID.ORGANIZATION_NAME
    )
    return TlsResult(
        valid=True,
        expiration_timestamp=expires_at,
        days_until_expiry=(expires_at - now).days,
        issuer_common_name=issuer,
        subject_common_name=_name_attribute(cert.subject, NameOID.COMMON_NAME),
    )


def _flatten_name(name_tuple) -> dict[str, str]:
    """Flatten the nested RDN tuples returned by ssl.getpeercert()."""
    flat: dict[str, str] = {}
    if not isinstance(name_tuple, tuple):
        return flat
    for item in name_tuple:
        if isinstance(item, tuple) and len(item) > 0:
            first = item[0]
            if isinstance(first, tuple) and len(first) == 2:
                flat[str(first[0])] = str(first[1])
    return flat


def tls_result_from_peer_cert(cert: dict, now: datetime | None = None) -> TlsResult:
    """Build a TlsResult from the dict form of ssl.getpeercert()."""
    if not cert:
        return TlsResult(valid=False, error="No certificate returned by server")

    # notAfter is in format: 'Mon DD HH:MM:SS YYYY GMT'
    not_after_raw = cert.get("notAfter")
    if not not_after_raw or not isinstance(not_after_raw, str):
        return TlsResult(valid=False, error="Certificate missing expiration date")

    expires_at = datetime.strptime(not_after_raw, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=UTC)
    now = now or datetime.now(UTC)

    issuer = _flatten_name(cert.get("issuer", ()))
    subject = _flatten_name(cert.get("subject", ()))

    return TlsResult(
        valid=True,
        expiration_timestamp=expires_at,
        days_until_expiry=(expires_at - now).days,
        issuer_common_name=issuer.get("commonName") or issuer.get("organizationName"),
        subject_common_name=subject.get("commonName"),
    )


def inspect_tls(
    url: str,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    allow_self_signed: bool = False,
    warning_days: int = SSL_EXPIRY_WARNING_DAYS,
) -> TlsResult:
    """Open a TLS handshake to the URL's host and read its certificate.

    Args:
        url: Site URL. Non-HTTPS URLs are reported as invalid without connecting.
        timeout: Connection and handshake timeout in seconds.
        allow_self_signed: Skip certificate verification. For controlled
            environments only; the default rejects invalid certificates.
        warning_days: Certificates expiring in fewer days are flagged as expiring soon.

    Returns:
        TlsResult. Never raises.
    """
    return replace(_read_certificate(url, timeout, allow_self_signed), warning_days=warning_days)


def _read_certificate(url: str, timeout: float, allow_self_signed: bool) -> TlsResult:
    parsed = urlparse(url)

    if parsed.scheme != "https":
        return TlsResult(valid=False, error=NOT_HTTPS_MESSAGE)

    hostname = parsed.hostname
    if not hostname:
        return TlsResult(valid=False, error="Invalid URL: no hostname")

    try:
        port = parsed.port or 443
    except ValueError as e:
        return TlsResult(valid=False, error=f"Invalid URL: {e}")

    context = ssl.create_default_context()
    if allow_self_signed:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    try:
        with socket.create_connection((hostname, port), timeout=timeout) as sock:
            with context.wrap_socket(sock, server_hostname=hostname) as ssl_sock:
                if allow_self_signed:
                    der = ssl_sock.getpeercert(binary_form=True)
                    if not der:
                        return TlsResult(valid=False, error="No certificate returned by server")
                    return tls_result_from_der(der)
                return tls_result_from_peer_cert(ssl_sock.getpeercert())

    except ssl.SSLCertVerificationError as e:
        return TlsResult(valid=False, error=f"SSL certificate verification failed: {e}")
    except ssl.SSLError as e:
        return TlsResult(valid=False, error=f"SSL error: {e}")
    except TimeoutError:
        return TlsResult(valid=False, error=f"SSL connection timeout after {timeout}s")
    except socket.gaierror as e:
        return TlsResult(valid=False, error=f"DNS resolution failed: {e}")
    except OSError as e:
        return TlsResult(valid=False, error=f"Connection failed: {e}")
    except ValueError as e:
        # Unparseable certificate dates or DER data.
        return TlsResult(valid=False, error=f"Invalid certificate: {e}")
