from typing import List, Optional
from datetime import datetime
from enum import Enum
import uuid

from pydantic import BaseModel, Field


class ProviderKind(str, Enum):
    """Kind of certificate authority behind a provider"""
    INTERNAL = "internal"
    GOVERNMENT = "government"
    COMMERCIAL = "commercial"


class TrustTier(str, Enum):
    INTERNAL = "internal"       # Only trusted inside the organization
    TRUSTED = "trusted"         # Government or verified commercial CA


class ValidityLevel(str, Enum):
    """Legal tier of a certificate"""
    CORPORATE = "corporate"
    GOVERNMENT = "government"


class CertificateStatus(str, Enum):
    """Lifecycle status; only advances vigente -> por_vencer -> vencido, or jumps to revocado"""
    VIGENTE = "vigente"
    POR_VENCER = "por_vencer"
    VENCIDO = "vencido"
    REVOCADO = "revocado"


class CertificateOrigin(str, Enum):
    ISSUED = "issued"           # Issued through a registry provider
    IMPORTED = "imported"       # Extracted from a PKCS#12 container


class RequestStatus(str, Enum):
    """Status of a two-phase certificate request"""
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


class CertificateAuthority(BaseModel):
    """Certificate authority provider descriptor"""
    provider_id: str = Field(..., description="Registry key, e.g. 'internal', 'onti_ar'")
    name: str = Field(..., description="Display name")
    country: str = Field(default="AR", description="ISO country code")
    kind: ProviderKind
    trust_tier: TrustTier = TrustTier.INTERNAL
    api_endpoint: Optional[str] = Field(None, description="Only for external CAs")
    is_active: bool = True


class CertificateType(BaseModel):
    """Type of certificate that can be requested"""
    name: str = Field(..., description="'internal', 'official_government', 'commercial_ca'")
    description: str
    validity_level: ValidityLevel
    processing_time: str = Field(..., description="'5min', '24h', '3-5 dias habiles'")
    requires_identity_verification: bool = False


class SubjectIdentity(BaseModel):
    """Identity a certificate is issued to"""
    nombre: str
    email: Optional[str] = None
    dni: Optional[str] = None
    cuil: Optional[str] = None
    organizacion: Optional[str] = None
    cargo: Optional[str] = None
    dependencia: Optional[str] = None
    pais: str = "AR"


class Certificate(BaseModel):
    """
    Issued or imported certificate.
    Immutable once issued except for status, retirement and successor linkage.
    """
    certificate_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    serial_number: str = Field(..., description="Upper-case hex serial")
    provider: str = Field(..., description="Registry provider id that issued it")
    origin: CertificateOrigin = CertificateOrigin.ISSUED
    certificate_type: str
    validity_level: ValidityLevel

    subject: SubjectIdentity
    subject_dn: str
    issuer_dn: str
    certificate_pem: str
    public_key_pem: str
    encrypted_private_key: Optional[bytes] = Field(None, repr=False, description="Sealed PKCS#8 blob")

    status: CertificateStatus = CertificateStatus.VIGENTE
    fecha_emision: datetime
    fecha_expiracion: datetime
    owner_id: str
    external_id: Optional[str] = Field(None, description="Provider-side id for status/revocation")

    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    supersedes: Optional[str] = Field(None, description="certificate_id this one renewed")
    superseded_by: Optional[str] = Field(None, description="certificate_id that renewed this one")
    retired: bool = Field(default=False, description="Retired for new signing, still verifiable")
    operation_in_flight: Optional[str] = Field(None, description="'renovacion' or 'revocacion' while a CA call is pending")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_revoked(self) -> bool:
        return self.status == CertificateStatus.REVOCADO or self.revoked_at is not None


class CertificateRequest(BaseModel):
    """Durable pending request against a two-phase provider"""
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    provider: str
    certificate_type: str
    subject: SubjectIdentity
    owner_id: str
    external_id: str = Field(..., description="Tracking id returned by the provider")
    status: RequestStatus = RequestStatus.PENDING
    required_documents: List[str] = Field(default_factory=list)
    estimated_time: Optional[str] = None
    encrypted_private_key: Optional[bytes] = Field(None, repr=False)
    renews_certificate_id: Optional[str] = None
    certificate_id: Optional[str] = Field(None, description="Set once the request becomes active")
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
