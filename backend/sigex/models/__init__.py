# Models package

from .certificate import (
    ProviderKind,
    TrustTier,
    ValidityLevel,
    CertificateStatus,
    CertificateOrigin,
    RequestStatus,
    CertificateAuthority,
    CertificateType,
    SubjectIdentity,
    Certificate,
    CertificateRequest
)
from .signature import SignatureRecord
from .expediente import (
    EstadoExpediente,
    Prioridad,
    TipoExpediente,
    DocumentClass,
    TipoDocumento,
    EstadoFirma,
    Oficina,
    Expediente,
    ExpedienteDocument,
    WorkflowMovimiento
)

__all__ = [
    "ProviderKind",
    "TrustTier",
    "ValidityLevel",
    "CertificateStatus",
    "CertificateOrigin",
    "RequestStatus",
    "CertificateAuthority",
    "CertificateType",
    "SubjectIdentity",
    "Certificate",
    "CertificateRequest",
    "SignatureRecord",
    "EstadoExpediente",
    "Prioridad",
    "TipoExpediente",
    "DocumentClass",
    "TipoDocumento",
    "EstadoFirma",
    "Oficina",
    "Expediente",
    "ExpedienteDocument",
    "WorkflowMovimiento"
]
