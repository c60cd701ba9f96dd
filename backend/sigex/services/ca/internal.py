"""
Internal certificate authority.

Issues self-signed certificates synchronously for non-official documents.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ...models import CertificateAuthority, CertificateType, ProviderKind, RequestStatus, SubjectIdentity, TrustTier
from ..signature.certificate_manager import CertificateManager
from .base import CertificateAuthorityProvider, IdentityValidation, ProviderResult, build_x509_name
from .catalog import INTERNAL

logger = logging.getLogger(__name__)


class InternalCertificateAuthority(CertificateAuthorityProvider):
    """Self-signed RSA certificates, active immediately"""

    certificate_types = [INTERNAL]

    def __init__(
        self,
        key_size: int = 2048,
        validity_days: int = 365,
        organization: Optional[str] = None,
        organizational_unit: Optional[str] = None
    ):
        self.key_size = key_size
        self.validity_days = validity_days
        self.organization = organization
        self.organizational_unit = organizational_unit
        self.descriptor = CertificateAuthority(
            provider_id="internal",
            name="Internal CA",
            kind=ProviderKind.INTERNAL,
            trust_tier=TrustTier.INTERNAL
        )

    async def request_certificate(self, subject: SubjectIdentity, certificate_type: CertificateType) -> ProviderResult:
        logger.info(f"Generating internal certificate for {subject.nombre} (RSA {self.key_size}-bit)")

        private_key = rsa.generate_private_key(
            public_exponent=65537,
            key_size=self.key_size
        )
        name = build_x509_name(subject, self.organization, self.organizational_unit)
        serial = secrets.randbits(128) | 1
        now = datetime.now(timezone.utc)

        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(serial)
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=self.validity_days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=True,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False
                ),
                critical=True
            )
            .sign(private_key, hashes.SHA256())
        )

        certificate_pem = certificate.public_bytes(serialization.Encoding.PEM).decode()
        valid_from, valid_to = CertificateManager.validity_window(certificate)

        return ProviderResult(
            status=RequestStatus.ACTIVE,
            certificate_pem=certificate_pem,
            private_key=private_key,
            serial_number=CertificateManager.serial_hex(certificate),
            valid_from=valid_from,
            valid_to=valid_to,
            subject_dn=CertificateManager.format_name(certificate.subject),
            issuer_dn=CertificateManager.format_name(certificate.issuer),
            estimated_time=certificate_type.processing_time
        )

    async def validate_identity(self, subject: SubjectIdentity) -> IdentityValidation:
        return IdentityValidation(valid=True, level="interno")

    async def get_status(self, external_id: str) -> ProviderResult:
        # Nothing is tracked remotely; internal certificates are active once issued
        return ProviderResult(status=RequestStatus.ACTIVE, external_id=external_id)

    async def revoke(self, external_id: str, reason: Optional[str] = None) -> bool:
        logger.info(f"Internal certificate {external_id} revoked: {reason or 'no reason given'}")
        return True
