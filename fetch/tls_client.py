"""TLS helpers: SSL context, certificate summaries and hostname verification.

When a request is forced to an override IP the library's own hostname check
cannot be used (it would check the IP, or a hostname from a previous hop), so
it is switched off and the leaf certificate is matched against the hostname we
meant to reach, after the handshake.
"""
import ipaddress
import logging
import ssl
import string
from typing import Any, List, Optional, Union

from cryptography import x509
from cryptography.x509.oid import NameOID

from core.errors import HostnameMismatchError
from models.tls import CertName, CertSummary, TLSSummary

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def build_ssl_context(allow_insecure: bool = False) -> ssl.SSLContext:
    """SSL context with hostname checking disabled; chain checks stay on unless insecure."""
    context = ssl.create_default_context()
    context.check_hostname = False
    if allow_insecure:
        context.verify_mode = ssl.CERT_NONE
    return context


def parse_ip(host: str) -> Optional[IPAddress]:
    """Parse host as an IP literal (brackets allowed for IPv6), None if it is a name."""
    candidate = host
    if len(host) >= 3 and host[0] == "[" and host[-1] == "]":
        candidate = host[1:-1]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def to_lower_ascii(value: str) -> str:
    # ASCII-only lowering for DNS labels (RFC 6125 6.4.1)
    return value.translate(_ASCII_LOWER)


def match_hostnames(pattern: str, host: str) -> bool:
    """Match host against a certificate name, allowing a single leading "*" label.

    Both sides are expected lower-cased. Trailing dots are ignored and the
    label counts must be equal, so "*.example.com" matches "www.example.com"
    but neither "example.com" nor "a.www.example.com".
    """
    host = host[:-1] if host.endswith(".") else host
    pattern = pattern[:-1] if pattern.endswith(".") else pattern

    if not pattern or not host:
        return False

    pattern_parts = pattern.split(".")
    host_parts = host.split(".")

    if len(pattern_parts) != len(host_parts):
        return False

    for i, pattern_part in enumerate(pattern_parts):
        if i == 0 and pattern_part == "*":
            continue
        if pattern_part != host_parts[i]:
            return False

    return True


def certificate_matches(certificate: CertSummary, host: str) -> bool:
    """True if the certificate is valid for host (IP SANs for IPs, DNS SANs or CN otherwise)."""
    ip = parse_ip(host)
    if ip is not None:
        for candidate in certificate.ip_addresses:
            if parse_ip(candidate) == ip:
                return True
        return False

    lowered = to_lower_ascii(host)

    if certificate.dns_names:
        # When SANs are present the common name is ignored
        return any(match_hostnames(to_lower_ascii(name), lowered) for name in certificate.dns_names)

    return match_hostnames(to_lower_ascii(certificate.subject.common_name), lowered)


def verify_hostname(tls: Optional[TLSSummary], host: str, url: str = "") -> None:
    """
    Verifies the leaf certificate of a TLS session against the intended hostname.

    Args:
        tls: Session summary; None (plain HTTP) or no certificate passes
        host: Hostname (or IP literal) the request was meant for, port stripped
        url: URL reported on failure

    Raises:
        HostnameMismatchError: when the certificate does not cover host
    """
    if tls is None or tls.leaf is None:
        return

    if not certificate_matches(tls.leaf, host):
        logger.debug(f"certificate for {url or host} does not cover {host}")
        ip = parse_ip(host)
        raise HostnameMismatchError(url or host, tls.leaf, str(ip) if ip is not None else host)


def _name_to_short(name: x509.Name) -> CertName:
    def joined(oid) -> str:
        return ", ".join(str(attr.value) for attr in name.get_attributes_for_oid(oid))

    return CertName(
        common_name=joined(NameOID.COMMON_NAME),
        organization=joined(NameOID.ORGANIZATION_NAME),
        country=joined(NameOID.COUNTRY_NAME),
        locality=joined(NameOID.LOCALITY_NAME),
        province=joined(NameOID.STATE_OR_PROVINCE_NAME),
        street_address=joined(NameOID.STREET_ADDRESS),
    )


def summarize_certificate(der: bytes) -> CertSummary:
    """Reduce a DER certificate to the fields we report and verify against."""
    cert = x509.load_der_x509_certificate(der)

    dns_names: List[str] = []
    emails: List[str] = []
    ips: List[str] = []
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        dns_names = san.get_values_for_type(x509.DNSName)
        emails = san.get_values_for_type(x509.RFC822Name)
        ips = [str(ip) for ip in san.get_values_for_type(x509.IPAddress)]
    except x509.ExtensionNotFound:
        pass

    return CertSummary(
        version=cert.version.value + 1,
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        issuer=_name_to_short(cert.issuer),
        subject=_name_to_short(cert.subject),
        dns_names=dns_names,
        email_addresses=emails,
        ip_addresses=ips,
    )


def summarize_session(ssl_object: Any, verified: bool) -> Optional[TLSSummary]:
    """
    Detaches the details of a live TLS session.

    Args:
        ssl_object: ssl.SSLObject / ssl.SSLSocket of the connection, or None
        verified: whether the chain was validated during the handshake

    Returns:
        TLSSummary, or None when the connection was not TLS
    """
    if ssl_object is None:
        return None

    der = ssl_object.getpeercert(binary_form=True)
    certificates: List[CertSummary] = []
    if der:
        try:
            certificates.append(summarize_certificate(der))
        except ValueError as e:
            logger.warning(f"unable to parse peer certificate: {e}")

    cipher = ssl_object.cipher()
    return TLSSummary(
        version=ssl_object.version(),
        handshake_complete=bool(der),
        cipher=cipher[0] if cipher else None,
        peer_certificates=certificates,
        verified=verified,
    )
