"""Shared test doubles: self-signed certificates, fake TLS sessions and a fake resolver."""
import ipaddress
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from core.errors import ResolutionError


def make_certificate(common_name="example.com", dns_names=(), ip_addresses=()):
    """Self-signed DER certificate."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Org"),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
    ])
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(0x1F2E)
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
    )

    sans = [x509.DNSName(n) for n in dns_names]
    sans += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses]
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)

    cert = builder.sign(key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.DER)


class FakeSSLObject:
    """Stands in for ssl.SSLObject in TLS session summaries."""

    def __init__(self, der):
        self.der = der

    def getpeercert(self, binary_form=False):
        return self.der

    def cipher(self):
        return ("TLS_AES_128_GCM_SHA256", "TLSv1.3", 128)

    def version(self):
        return "TLSv1.3"


class FakeNetworkStream:
    def __init__(self, ssl_object):
        self.ssl_object = ssl_object

    def get_extra_info(self, name):
        return self.ssl_object if name == "ssl_object" else None


def fake_resolver(records):
    """Resolver backed by a dict; unknown hosts fail like a missing DNS record."""
    calls = []

    def resolve(host):
        calls.append(host)
        if host not in records:
            raise ResolutionError(host)
        return records[host]

    resolve.calls = calls
    return resolve
