from typing import Dict

from ...models import CertificateType, ValidityLevel

INTERNAL = "internal"
OFFICIAL_GOVERNMENT = "official_government"
COMMERCIAL_CA = "commercial_ca"

CERTIFICATE_TYPES: Dict[str, CertificateType] = {
    INTERNAL: CertificateType(
        name=INTERNAL,
        description="Certificado interno para documentos no oficiales",
        validity_level=ValidityLevel.CORPORATE,
        processing_time="5min",
        requires_identity_verification=False,
    ),
    OFFICIAL_GOVERNMENT: CertificateType(
        name=OFFICIAL_GOVERNMENT,
        description="Certificado emitido por una autoridad certificante gubernamental",
        validity_level=ValidityLevel.GOVERNMENT,
        processing_time="3-5 dias habiles",
        requires_identity_verification=True,
    ),
    COMMERCIAL_CA: CertificateType(
        name=COMMERCIAL_CA,
        description="Certificado emitido por una autoridad certificante comercial",
        validity_level=ValidityLevel.CORPORATE,
        processing_time="24h",
        requires_identity_verification=True,
    ),
}
