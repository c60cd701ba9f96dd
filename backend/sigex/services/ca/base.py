"""
Certificate authority provider interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from cryptography import x509
from cryptography.x509.oid import NameOID

from ...models import CertificateAuthority, CertificateType, RequestStatus, SubjectIdentity


@dataclass
class ProviderResult:
    """Answer of a provider to a request or status poll"""
    status: RequestStatus
    external_id: Optional[str] = None
    certificate_pem: Optional[str] = None
    private_key: Any = field(default=None, repr=False)
    serial_number: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    subject_dn: Optional[str] = None
    issuer_dn: Optional[str] = None
    required_documents: List[str] = field(default_factory=list)
    estimated_time: Optional[str] = None
    validation_url: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass
class IdentityValidation:
    valid: bool
    level: Optional[str] = None
    missing_fields: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)


class CertificateAuthorityProvider(ABC):
    """
    A certificate authority reachable by the registry.

    Single-phase providers answer ``request_certificate`` with an active
    certificate and its private key object. Two-phase providers answer with
    a pending result and a tracking id; the key pair they generated locally
    travels in ``private_key`` so it can be sealed and kept with the
    durable request until ``get_status`` reports the issued certificate.
    """

    descriptor: CertificateAuthority
    certificate_types: List[str] = []

    @property
    def provider_id(self) -> str:
        return self.descriptor.provider_id

    def issues(self, certificate_type: CertificateType) -> bool:
        return certificate_type.name in self.certificate_types

    @abstractmethod
    async def request_certificate(self, subject: SubjectIdentity, certificate_type: CertificateType) -> ProviderResult:
        pass

    @abstractmethod
    async def validate_identity(self, subject: SubjectIdentity) -> IdentityValidation:
        pass

    @abstractmethod
    async def get_status(self, external_id: str) -> ProviderResult:
        pass

    @abstractmethod
    async def revoke(self, external_id: str, reason: Optional[str] = None) -> bool:
        pass

    async def aclose(self):
        pass


def build_x509_name(subject: SubjectIdentity, organization: Optional[str] = None,
                    organizational_unit: Optional[str] = None) -> x509.Name:
    """X.509 subject name for a SubjectIdentity"""
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, subject.nombre)]
    if subject.email:
        attributes.append(x509.NameAttribute(NameOID.EMAIL_ADDRESS, subject.email))
    if subject.cuil:
        attributes.append(x509.NameAttribute(NameOID.SERIAL_NUMBER, f"CUIL {subject.cuil}"))
    elif subject.dni:
        attributes.append(x509.NameAttribute(NameOID.SERIAL_NUMBER, f"DNI {subject.dni}"))
    if subject.cargo:
        attributes.append(x509.NameAttribute(NameOID.TITLE, subject.cargo))
    org = subject.organizacion or organization
    if org:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
    unit = subject.dependencia or organizational_unit
    if unit:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, unit))
    attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, subject.pais))
    return x509.Name(attributes)
