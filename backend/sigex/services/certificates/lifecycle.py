"""
Certificate Lifecycle Manager

Issues, imports, renews and revokes certificates, derives their status
from the validity window and decides whether a certificate may sign a
given class of document.

Signing, renewal and revocation of the same certificate are serialised
with a per-certificate lock. The lock is never held across a remote CA
call; instead the certificate is flagged with ``operation_in_flight`` so
concurrent signing attempts are refused.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Union

from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12
from cryptography.x509.oid import NameOID

from ...core.exceptions import (
    CertificateOperationInProgressError,
    IncompatibleCertificateError,
    LifecycleError,
    NotFoundError,
    PolicyError,
    ProviderRejectedError,
    ValidationError
)
from ...core.locks import KeyedLock
from ...core.logging_config import set_expediente_context
from ...models import (
    Certificate,
    CertificateOrigin,
    CertificateRequest,
    CertificateStatus,
    CertificateType,
    DocumentClass,
    RequestStatus,
    SubjectIdentity,
    ValidityLevel
)
from ...store.base import DurableStore
from ..ca.base import ProviderResult
from ..ca.registry import CertificateAuthorityRegistry
from ..signature.certificate_manager import CertificateManager
from .key_vault import PrivateKeyVault

logger = logging.getLogger(__name__)

IMPORTED_PROVIDER = "imported"
MIN_RSA_KEY_SIZE = 2048
MIN_EC_KEY_SIZE = 256

_STATUS_ORDER = [CertificateStatus.VIGENTE, CertificateStatus.POR_VENCER, CertificateStatus.VENCIDO]


class CertificateLifecycleManager:
    """Service for the certificate lifecycle"""

    def __init__(
        self,
        registry: CertificateAuthorityRegistry,
        store: DurableStore,
        vault: PrivateKeyVault,
        expiry_warning_days: int = 30,
        trusted_government_issuers: Optional[Iterable[str]] = None
    ):
        self.registry = registry
        self.store = store
        self.vault = vault
        self.expiry_warning_days = expiry_warning_days
        self.trusted_government_issuers = list(trusted_government_issuers or [])
        self._certificate_locks = KeyedLock()
        self._request_locks = KeyedLock()

    def certificate_lock(self, certificate_id: str):
        """Lock shared with the signing engine"""
        return self._certificate_locks.hold(certificate_id)

    # Status

    def derive_status(self, certificate: Certificate, now: Optional[datetime] = None) -> CertificateStatus:
        if certificate.is_revoked:
            return CertificateStatus.REVOCADO

        now = now or datetime.utcnow()
        if now >= certificate.fecha_expiracion:
            derived = CertificateStatus.VENCIDO
        elif certificate.fecha_expiracion - now <= timedelta(days=self.expiry_warning_days):
            derived = CertificateStatus.POR_VENCER
        else:
            derived = CertificateStatus.VIGENTE

        # Status never moves backwards
        if _STATUS_ORDER.index(certificate.status) > _STATUS_ORDER.index(derived):
            return certificate.status
        return derived

    async def refresh_status(self, certificate: Certificate, now: Optional[datetime] = None) -> Certificate:
        status = self.derive_status(certificate, now)
        if status == certificate.status:
            return certificate
        logger.info(
            f"Certificate {certificate.serial_number} status {certificate.status.value} -> {status.value}",
            extra={"certificate_id": certificate.certificate_id}
        )
        return await self.store.update_certificate(certificate.certificate_id, status=status)

    async def get_certificate(self, certificate_id: str) -> Certificate:
        certificate = await self.store.get_certificate(certificate_id)
        if certificate is None:
            raise NotFoundError("Certificate", certificate_id)
        return await self.refresh_status(certificate)

    async def list_certificates(self, owner_id: Optional[str] = None) -> List[Certificate]:
        return [await self.refresh_status(c) for c in await self.store.list_certificates(owner_id)]

    async def status_for_serial(self, serial_number: str) -> Optional[CertificateStatus]:
        certificate = await self.store.find_certificate_by_serial(serial_number)
        if certificate is None:
            return None
        return (await self.refresh_status(certificate)).status

    # Issuance

    async def request_certificate(
        self,
        provider: str,
        subject: SubjectIdentity,
        certificate_type: str,
        owner_id: str
    ) -> Union[Certificate, CertificateRequest]:
        """
        Request a certificate from a registry provider.

        Returns the issued Certificate for single-phase providers, or the
        durable pending CertificateRequest for two-phase providers. Nothing
        is persisted unless the provider answered.
        """
        cert_type = self.registry.certificate_type(certificate_type)
        self.registry.provider_for_type(provider, certificate_type)
        set_expediente_context(user_id=owner_id)

        if cert_type.requires_identity_verification:
            validation = await self.registry.validate_identity(provider, subject)
            if not validation.valid:
                raise ValidationError(
                    "Identity validation failed",
                    {"provider": provider, "missing_fields": validation.missing_fields}
                )

        result = await self.registry.request_certificate(provider, subject, certificate_type)
        return await self._persist_result(provider, cert_type, subject, owner_id, result)

    async def _persist_result(
        self,
        provider: str,
        cert_type: CertificateType,
        subject: SubjectIdentity,
        owner_id: str,
        result: ProviderResult,
        renews_certificate_id: Optional[str] = None
    ) -> Union[Certificate, CertificateRequest]:
        if result.status == RequestStatus.FAILED:
            raise ProviderRejectedError(
                f"Provider {provider} refused the certificate: {result.failure_reason or 'no reason given'}",
                {"provider": provider, "reason": result.failure_reason}
            )

        sealed_key = self.vault.seal(result.private_key)

        if result.status == RequestStatus.PENDING:
            request = CertificateRequest(
                provider=provider,
                certificate_type=cert_type.name,
                subject=subject,
                owner_id=owner_id,
                external_id=result.external_id,
                required_documents=result.required_documents,
                estimated_time=result.estimated_time,
                encrypted_private_key=sealed_key,
                renews_certificate_id=renews_certificate_id
            )
            await self.store.insert_certificate_request(request)
            logger.info(f"Certificate request {request.request_id} pending at {provider} ({result.external_id})")
            return request

        certificate = self._build_certificate(
            certificate_pem=result.certificate_pem,
            provider=provider,
            cert_type=cert_type,
            subject=subject,
            owner_id=owner_id,
            sealed_key=sealed_key,
            external_id=result.external_id,
            supersedes=renews_certificate_id
        )
        await self.store.insert_certificate(certificate)
        logger.info(
            f"Certificate {certificate.serial_number} issued by {provider} for {subject.nombre}",
            extra={"certificate_id": certificate.certificate_id}
        )
        return certificate

    def _build_certificate(
        self,
        certificate_pem: str,
        provider: str,
        cert_type: CertificateType,
        subject: SubjectIdentity,
        owner_id: str,
        sealed_key: bytes,
        external_id: Optional[str] = None,
        origin: CertificateOrigin = CertificateOrigin.ISSUED,
        supersedes: Optional[str] = None
    ) -> Certificate:
        parsed = CertificateManager.load_certificate(certificate_pem)
        valid_from, valid_to = CertificateManager.validity_window(parsed)
        serial = CertificateManager.serial_hex(parsed)

        certificate = Certificate(
            serial_number=serial,
            provider=provider,
            origin=origin,
            certificate_type=cert_type.name,
            validity_level=cert_type.validity_level,
            subject=subject,
            subject_dn=CertificateManager.format_name(parsed.subject),
            issuer_dn=CertificateManager.format_name(parsed.issuer),
            certificate_pem=certificate_pem,
            public_key_pem=CertificateManager.public_key_pem(parsed.public_key()),
            encrypted_private_key=sealed_key,
            fecha_emision=valid_from,
            fecha_expiracion=valid_to,
            owner_id=owner_id,
            external_id=external_id or serial,
            supersedes=supersedes
        )
        certificate.status = self.derive_status(certificate)
        return certificate

    async def poll_request(self, request_id: str) -> CertificateRequest:
        """Poll a pending request; on activation the certificate is created and linked"""
        async with self._request_locks.hold(request_id):
            request = await self.store.get_certificate_request(request_id)
            if request is None:
                raise NotFoundError("CertificateRequest", request_id)
            if request.status != RequestStatus.PENDING:
                return request

            result = await self.registry.get_status(request.provider, request.external_id)

            if result.status == RequestStatus.PENDING:
                return request

            if result.status == RequestStatus.FAILED:
                logger.warning(f"Certificate request {request_id} failed at {request.provider}: {result.failure_reason}")
                return await self.store.update_certificate_request(
                    request_id,
                    status=RequestStatus.FAILED,
                    failure_reason=result.failure_reason or "rejected by provider"
                )

            parsed = CertificateManager.load_certificate(result.certificate_pem)
            expected_public_key = CertificateManager.public_key_pem(
                self.vault.public_key(request.encrypted_private_key)
            )
            if CertificateManager.public_key_pem(parsed.public_key()) != expected_public_key:
                raise ProviderRejectedError(
                    f"Certificate issued for request {request_id} does not match the requested key pair",
                    {"provider": request.provider, "external_id": request.external_id}
                )

            certificate = self._build_certificate(
                certificate_pem=result.certificate_pem,
                provider=request.provider,
                cert_type=self.registry.certificate_type(request.certificate_type),
                subject=request.subject,
                owner_id=request.owner_id,
                sealed_key=request.encrypted_private_key,
                external_id=request.external_id,
                supersedes=request.renews_certificate_id
            )
            await self.store.insert_certificate(certificate)
            if request.renews_certificate_id:
                await self._link_successor(request.renews_certificate_id, certificate.certificate_id)

            logger.info(
                f"Certificate request {request_id} activated as {certificate.serial_number}",
                extra={"certificate_id": certificate.certificate_id}
            )
            return await self.store.update_certificate_request(
                request_id,
                status=RequestStatus.ACTIVE,
                certificate_id=certificate.certificate_id
            )

    async def get_request(self, request_id: str) -> CertificateRequest:
        request = await self.store.get_certificate_request(request_id)
        if request is None:
            raise NotFoundError("CertificateRequest", request_id)
        return request

    # Import

    async def import_pkcs12(
        self,
        data: bytes,
        passphrase: Optional[str],
        owner_id: str,
        certificate_type: str = "official_government"
    ) -> Certificate:
        """Import key and certificate from a PKCS#12 (.p12/.pfx) container"""
        cert_type = self.registry.certificate_type(certificate_type)
        try:
            private_key, parsed, _ = pkcs12.load_key_and_certificates(
                data,
                passphrase.encode() if passphrase else None
            )
        except ValueError:
            raise ValidationError("Invalid PKCS#12 container or wrong passphrase")
        if private_key is None or parsed is None:
            raise ValidationError("PKCS#12 container must hold a certificate and its private key")

        now = datetime.utcnow()
        valid_from, valid_to = CertificateManager.validity_window(parsed)
        serial = CertificateManager.serial_hex(parsed)
        if now < valid_from:
            raise ValidationError("Certificate is not yet valid", {"not_valid_before": valid_from.isoformat()})
        if now >= valid_to:
            raise ValidationError("Certificate has expired", {"not_valid_after": valid_to.isoformat()})

        if isinstance(private_key, rsa.RSAPrivateKey) and private_key.key_size < MIN_RSA_KEY_SIZE:
            raise ValidationError(
                f"RSA key size {private_key.key_size} is below the {MIN_RSA_KEY_SIZE}-bit minimum",
                {"key_size": private_key.key_size}
            )
        if isinstance(private_key, ec.EllipticCurvePrivateKey) and private_key.curve.key_size < MIN_EC_KEY_SIZE:
            raise ValidationError(
                f"EC curve {private_key.curve.name} is below the {MIN_EC_KEY_SIZE}-bit minimum",
                {"curve": private_key.curve.name}
            )
        if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise ValidationError(f"Unsupported key type: {type(private_key).__name__}")

        issuer_dn = CertificateManager.format_name(parsed.issuer)
        if cert_type.validity_level == ValidityLevel.GOVERNMENT and not any(
            trusted in issuer_dn for trusted in self.trusted_government_issuers
        ):
            raise ValidationError(
                "Certificate issuer is not a trusted government authority",
                {"issuer": issuer_dn}
            )

        if await self.store.find_certificate_by_serial(serial):
            raise ValidationError(f"Certificate {serial} is already registered", {"serial_number": serial})

        emails = parsed.subject.get_attributes_for_oid(NameOID.EMAIL_ADDRESS)
        subject = SubjectIdentity(
            nombre=CertificateManager.common_name(parsed.subject) or issuer_dn,
            email=emails[0].value if emails else None
        )
        certificate = self._build_certificate(
            certificate_pem=parsed.public_bytes(Encoding.PEM).decode(),
            provider=IMPORTED_PROVIDER,
            cert_type=cert_type,
            subject=subject,
            owner_id=owner_id,
            sealed_key=self.vault.seal(private_key),
            origin=CertificateOrigin.IMPORTED
        )
        del private_key

        await self.store.insert_certificate(certificate)
        logger.info(
            f"Imported {cert_type.name} certificate {certificate.serial_number} for owner {owner_id}",
            extra={"certificate_id": certificate.certificate_id}
        )
        return certificate

    # Renewal and revocation

    async def _set_in_flight(self, certificate_id: str, operation: Optional[str]):
        await self.store.update_certificate(certificate_id, operation_in_flight=operation)

    async def _link_successor(self, previous_id: str, successor_id: str):
        async with self._certificate_locks.hold(previous_id):
            await self.store.update_certificate(previous_id, superseded_by=successor_id, retired=True)
        logger.info(f"Certificate {previous_id} superseded by {successor_id}")

    async def renew(self, certificate_id: str) -> Union[Certificate, CertificateRequest]:
        """
        Issue a successor for the same subject through the same provider.

        The previous certificate is retired for new signing once the
        successor is active; for two-phase providers that happens when the
        pending request is polled to activation.
        """
        async with self._certificate_locks.hold(certificate_id):
            certificate = await self.get_certificate(certificate_id)
            if certificate.origin == CertificateOrigin.IMPORTED:
                raise ValidationError(
                    "Imported certificates are renewed by importing the new container",
                    {"certificate_id": certificate_id}
                )
            if certificate.operation_in_flight:
                raise CertificateOperationInProgressError(
                    f"Certificate {certificate.serial_number} has a {certificate.operation_in_flight} in progress",
                    certificate.serial_number,
                    certificate.status.value
                )
            if certificate.status not in (CertificateStatus.VIGENTE, CertificateStatus.POR_VENCER) or certificate.retired:
                raise LifecycleError(
                    f"Certificate {certificate.serial_number} cannot be renewed in status {certificate.status.value}",
                    certificate.serial_number,
                    certificate.status.value,
                    {"retired": certificate.retired}
                )
            await self._set_in_flight(certificate_id, "renovacion")

        try:
            result = await self.registry.request_certificate(
                certificate.provider,
                certificate.subject,
                certificate.certificate_type
            )
            renewed = await self._persist_result(
                certificate.provider,
                self.registry.certificate_type(certificate.certificate_type),
                certificate.subject,
                certificate.owner_id,
                result,
                renews_certificate_id=certificate_id
            )
            if isinstance(renewed, Certificate):
                await self._link_successor(certificate_id, renewed.certificate_id)
            return renewed
        finally:
            await self._set_in_flight(certificate_id, None)

    async def revoke(self, certificate_id: str, reason: Optional[str] = None) -> Certificate:
        """Revoke at the provider (issued certificates) and mark revocado; idempotent"""
        async with self._certificate_locks.hold(certificate_id):
            certificate = await self.store.get_certificate(certificate_id)
            if certificate is None:
                raise NotFoundError("Certificate", certificate_id)
            if certificate.is_revoked:
                return certificate
            if certificate.operation_in_flight:
                raise CertificateOperationInProgressError(
                    f"Certificate {certificate.serial_number} has a {certificate.operation_in_flight} in progress",
                    certificate.serial_number,
                    certificate.status.value
                )
            if certificate.origin != CertificateOrigin.ISSUED:
                return await self._mark_revoked(certificate, reason)
            await self._set_in_flight(certificate_id, "revocacion")

        revoked = None
        try:
            await self.registry.revoke(certificate.provider, certificate.external_id or certificate.serial_number, reason)
            async with self._certificate_locks.hold(certificate_id):
                revoked = await self._mark_revoked(certificate, reason)
            return revoked
        finally:
            if revoked is None:
                await self._set_in_flight(certificate_id, None)

    async def _mark_revoked(self, certificate: Certificate, reason: Optional[str]) -> Certificate:
        logger.warning(
            f"Certificate {certificate.serial_number} revoked: {reason or 'no reason given'}",
            extra={"certificate_id": certificate.certificate_id}
        )
        return await self.store.update_certificate(
            certificate.certificate_id,
            status=CertificateStatus.REVOCADO,
            revoked_at=datetime.utcnow(),
            revocation_reason=reason,
            operation_in_flight=None
        )

    # Signing eligibility

    def ensure_signable(self, certificate: Certificate, document_class: DocumentClass, now: Optional[datetime] = None):
        """Raise IncompatibleCertificateError (tier) or LifecycleError (status)"""
        document_class = DocumentClass(document_class)
        required = document_class.required_validity_level
        if required is not None and certificate.validity_level != required:
            raise IncompatibleCertificateError(
                certificate.serial_number,
                certificate.validity_level.value,
                required.value,
                document_class.value
            )

        if certificate.operation_in_flight:
            raise CertificateOperationInProgressError(
                f"Certificate {certificate.serial_number} has a {certificate.operation_in_flight} in progress",
                certificate.serial_number,
                certificate.status.value
            )

        status = self.derive_status(certificate, now)
        if status != CertificateStatus.VIGENTE:
            raise LifecycleError(
                f"Certificate {certificate.serial_number} is {status.value} and cannot sign",
                certificate.serial_number,
                status.value
            )
        if certificate.retired:
            raise LifecycleError(
                f"Certificate {certificate.serial_number} was superseded and cannot sign",
                certificate.serial_number,
                status.value,
                {"superseded_by": certificate.superseded_by}
            )

    def is_valid_for_signing(self, certificate: Certificate, document_class: DocumentClass, now: Optional[datetime] = None) -> bool:
        try:
            self.ensure_signable(certificate, document_class, now)
        except (PolicyError, LifecycleError):
            return False
        return True
