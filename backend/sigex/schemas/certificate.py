"""
Certificate schemas for API requests/responses.

Responses never carry the sealed private key.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from ..models import (
    Certificate,
    CertificateOrigin,
    CertificateRequest,
    CertificateStatus,
    DocumentClass,
    RequestStatus,
    SubjectIdentity,
    ValidityLevel
)


class CertificateIssueRequest(BaseModel):
    """Request schema for certificate issuance"""
    provider: str = Field(default="internal", description="Registry provider id")
    certificate_type: str = Field(default="internal")
    subject: SubjectIdentity
    owner_id: Optional[str] = Field(None, description="Defaults to the acting user")


class CertificateRevokeRequest(BaseModel):
    reason: Optional[str] = None


class CertificateResponse(BaseModel):
    certificate_id: str
    serial_number: str
    provider: str
    origin: CertificateOrigin
    certificate_type: str
    validity_level: ValidityLevel
    subject: SubjectIdentity
    subject_dn: str
    issuer_dn: str
    certificate_pem: str
    public_key_pem: str
    status: CertificateStatus
    fecha_emision: datetime
    fecha_expiracion: datetime
    owner_id: str
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    supersedes: Optional[str] = None
    superseded_by: Optional[str] = None
    retired: bool = False
    operation_in_flight: Optional[str] = None

    @classmethod
    def from_model(cls, certificate: Certificate) -> "CertificateResponse":
        return cls.model_validate(certificate.model_dump(exclude={"encrypted_private_key"}))


class CertificateRequestResponse(BaseModel):
    request_id: str
    provider: str
    certificate_type: str
    subject: SubjectIdentity
    owner_id: str
    external_id: str
    status: RequestStatus
    required_documents: List[str] = Field(default_factory=list)
    estimated_time: Optional[str] = None
    renews_certificate_id: Optional[str] = None
    certificate_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, request: CertificateRequest) -> "CertificateRequestResponse":
        return cls.model_validate(request.model_dump(exclude={"encrypted_private_key"}))


class CertificateIssueResponse(BaseModel):
    """Either the issued certificate or the pending request"""
    status: RequestStatus
    certificate: Optional[CertificateResponse] = None
    request: Optional[CertificateRequestResponse] = None

    @classmethod
    def from_result(cls, result) -> "CertificateIssueResponse":
        if isinstance(result, Certificate):
            return cls(status=RequestStatus.ACTIVE, certificate=CertificateResponse.from_model(result))
        return cls(status=result.status, request=CertificateRequestResponse.from_model(result))


class SigningCheckResponse(BaseModel):
    certificate_id: str
    document_class: DocumentClass
    status: CertificateStatus
    valid_for_signing: bool
