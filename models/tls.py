from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class CertName:
    """Distinguished name fields we report for a certificate issuer/subject."""
    common_name: str = ""
    organization: str = ""
    country: str = ""
    locality: str = ""
    province: str = ""
    street_address: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "common_name": self.common_name,
            "organization": self.organization,
            "country": self.country,
            "locality": self.locality,
            "province": self.province,
            "street_address": self.street_address,
        }


@dataclass(frozen=True)
class CertSummary:
    """Detached projection of one X.509 certificate."""
    version: int
    serial_number: str
    not_before: Optional[datetime]
    not_after: Optional[datetime]
    issuer: CertName
    subject: CertName
    dns_names: List[str] = field(default_factory=list)
    email_addresses: List[str] = field(default_factory=list)
    ip_addresses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "serial_number": self.serial_number,
            "not_before": self.not_before.isoformat() if self.not_before else None,
            "not_after": self.not_after.isoformat() if self.not_after else None,
            "issuer": self.issuer.to_dict(),
            "subject": self.subject.to_dict(),
            "dns_names": list(self.dns_names),
            "email_addresses": list(self.email_addresses),
            "ip_addresses": list(self.ip_addresses),
        }


@dataclass(frozen=True)
class TLSSummary:
    """TLS session details that outlive the socket they were read from.

    `verified` is True when the certificate chain was validated against the
    trust store during the handshake (i.e. insecure mode was off).
    """
    version: Optional[str]
    handshake_complete: bool
    cipher: Optional[str] = None
    peer_certificates: List[CertSummary] = field(default_factory=list)
    verified: bool = False

    @property
    def leaf(self) -> Optional[CertSummary]:
        return self.peer_certificates[0] if self.peer_certificates else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "handshake_complete": self.handshake_complete,
            "cipher": self.cipher,
            "peer_certificates": [c.to_dict() for c in self.peer_certificates],
            "verified": self.verified,
        }
