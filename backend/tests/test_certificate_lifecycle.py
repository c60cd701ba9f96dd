import json
from datetime import datetime, timedelta

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from sigex.core.exceptions import (
    CertificateOperationInProgressError,
    IncompatibleCertificateError,
    LifecycleError,
    ProviderRejectedError,
    ProviderUnavailableError,
    ValidationError
)
from sigex.models import (
    Certificate,
    CertificateOrigin,
    CertificateRequest,
    CertificateStatus,
    DocumentClass,
    RequestStatus,
    SubjectIdentity,
    ValidityLevel
)
from sigex.services.ca import build_default_registry
from sigex.services.container import build_services


class FakeGovernmentCA:
    """Scripted two-phase CA: requests stay pending until ``state`` changes"""

    def __init__(self, csr_issuer):
        self.csr_issuer = csr_issuer
        self.csrs = {}
        self.state = "pending"
        self.revoked = []
        self.available = True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            return httpx.Response(503)

        path = request.url.path
        if request.method == "POST" and path.endswith("/identidad/validar"):
            return httpx.Response(200, json={"valid": True, "level": "alto"})
        if request.method == "POST" and path.endswith("/solicitudes"):
            request_id = f"SOL-{len(self.csrs) + 1}"
            self.csrs[request_id] = json.loads(request.content)["csr_pem"]
            return httpx.Response(201, json={
                "request_id": request_id,
                "status": "pending_validation",
                "required_documents": ["DNI", "Constancia de CUIL"]
            })
        if request.method == "POST" and path.endswith("/revocar"):
            self.revoked.append(path.split("/")[-2])
            return httpx.Response(200, json={"revoked": True})
        if request.method == "GET":
            request_id = path.rsplit("/", 1)[-1]
            if self.state == "issued":
                return httpx.Response(200, json={
                    "status": "issued",
                    "certificate_pem": self.csr_issuer(self.csrs[request_id])
                })
            if self.state == "rejected":
                return httpx.Response(200, json={"status": "rejected", "reason": "Documentacion incompleta"})
            return httpx.Response(200, json={"status": "pending"})
        return httpx.Response(404)


@pytest.fixture
def fake_ca(csr_issuer):
    return FakeGovernmentCA(csr_issuer)


@pytest.fixture
async def gov_services(settings, store, blob_storage, fake_ca):
    settings.GOVERNMENT_CA_URL = "https://ca.example.gob.ar/api"
    registry = build_default_registry(settings, transport=httpx.MockTransport(fake_ca))
    container = build_services(settings, store=store, blob_storage=blob_storage, registry=registry)
    yield container
    await container.close()


async def request_government_certificate(services, subject) -> CertificateRequest:
    return await services.lifecycle.request_certificate(
        provider="onti_ar",
        subject=subject,
        certificate_type="official_government",
        owner_id="jperez"
    )


class TestInternalIssuance:

    async def test_internal_certificate_is_active_and_sealed(self, services, internal_certificate):
        assert isinstance(internal_certificate, Certificate)
        assert internal_certificate.status == CertificateStatus.VIGENTE
        assert internal_certificate.validity_level == ValidityLevel.CORPORATE
        assert internal_certificate.provider == "internal"
        assert internal_certificate.origin == CertificateOrigin.ISSUED
        assert b"ENCRYPTED PRIVATE KEY" in internal_certificate.encrypted_private_key

        stored = await services.store.get_certificate(internal_certificate.certificate_id)
        assert stored.serial_number == internal_certificate.serial_number
        assert await services.lifecycle.status_for_serial(stored.serial_number) == CertificateStatus.VIGENTE

    async def test_list_certificates_by_owner(self, services, internal_certificate_factory):
        await internal_certificate_factory(owner_id="jperez")
        await internal_certificate_factory(owner_id="mgonzalez")

        assert len(await services.lifecycle.list_certificates()) == 2
        owned = await services.lifecycle.list_certificates("mgonzalez")
        assert [c.owner_id for c in owned] == ["mgonzalez"]

    async def test_unknown_serial_has_no_status(self, services):
        assert await services.lifecycle.status_for_serial("ABCDEF") is None


class TestStatusDerivation:

    async def test_close_to_expiry_is_por_vencer(self, services, internal_certificate):
        await services.store.update_certificate(
            internal_certificate.certificate_id,
            fecha_expiracion=datetime.utcnow() + timedelta(days=10)
        )
        certificate = await services.lifecycle.get_certificate(internal_certificate.certificate_id)
        assert certificate.status == CertificateStatus.POR_VENCER

    async def test_past_expiry_is_vencido_and_persisted(self, services, internal_certificate):
        await services.store.update_certificate(
            internal_certificate.certificate_id,
            fecha_expiracion=datetime.utcnow() - timedelta(seconds=1)
        )
        certificate = await services.lifecycle.get_certificate(internal_certificate.certificate_id)
        assert certificate.status == CertificateStatus.VENCIDO

        stored = await services.store.get_certificate(internal_certificate.certificate_id)
        assert stored.status == CertificateStatus.VENCIDO

    async def test_status_never_moves_backwards(self, services, internal_certificate):
        expired = internal_certificate.model_copy(update={"status": CertificateStatus.VENCIDO})
        assert services.lifecycle.derive_status(expired) == CertificateStatus.VENCIDO

    async def test_revoked_wins_over_validity(self, services, internal_certificate):
        revoked = internal_certificate.model_copy(update={"revoked_at": datetime.utcnow()})
        assert services.lifecycle.derive_status(revoked) == CertificateStatus.REVOCADO


class TestSigningEligibility:

    async def test_internal_certificate_cannot_sign_official_documents(self, services, internal_certificate):
        with pytest.raises(IncompatibleCertificateError) as exc_info:
            services.lifecycle.ensure_signable(internal_certificate, DocumentClass.OFICIAL)
        assert exc_info.value.details["required_level"] == "government"
        assert services.lifecycle.is_valid_for_signing(internal_certificate, DocumentClass.NO_OFICIAL)

    async def test_government_certificate_signs_both_classes(self, services, government_certificate):
        assert services.lifecycle.is_valid_for_signing(government_certificate, DocumentClass.OFICIAL)
        assert services.lifecycle.is_valid_for_signing(government_certificate, DocumentClass.NO_OFICIAL)

    async def test_por_vencer_cannot_sign(self, services, internal_certificate):
        soon = datetime.utcnow() + timedelta(days=5)
        with pytest.raises(LifecycleError) as exc_info:
            services.lifecycle.ensure_signable(
                internal_certificate.model_copy(update={"fecha_expiracion": soon}),
                DocumentClass.NO_OFICIAL
            )
        assert exc_info.value.status == "por_vencer"

    async def test_in_flight_operation_blocks_signing(self, services, internal_certificate):
        busy = await services.store.update_certificate(
            internal_certificate.certificate_id,
            operation_in_flight="renovacion"
        )
        with pytest.raises(CertificateOperationInProgressError) as exc_info:
            services.lifecycle.ensure_signable(busy, DocumentClass.NO_OFICIAL)
        assert exc_info.value.retryable


class TestTwoPhaseIssuance:
    """Government CA: pending request, polling, activation"""

    async def test_request_is_pending_until_polled_active(self, gov_services, fake_ca, subject):
        request = await request_government_certificate(gov_services, subject)

        assert isinstance(request, CertificateRequest)
        assert request.status == RequestStatus.PENDING
        assert request.external_id == "SOL-1"
        assert request.required_documents == ["DNI", "Constancia de CUIL"]
        assert await gov_services.lifecycle.list_certificates() == []

        polled = await gov_services.lifecycle.poll_request(request.request_id)
        assert polled.status == RequestStatus.PENDING

        fake_ca.state = "issued"
        activated = await gov_services.lifecycle.poll_request(request.request_id)
        assert activated.status == RequestStatus.ACTIVE

        certificate = await gov_services.lifecycle.get_certificate(activated.certificate_id)
        assert certificate.validity_level == ValidityLevel.GOVERNMENT
        assert certificate.provider == "onti_ar"
        assert certificate.external_id == "SOL-1"
        assert gov_services.lifecycle.is_valid_for_signing(certificate, DocumentClass.OFICIAL)

        # Polling an active request is a no-op
        again = await gov_services.lifecycle.poll_request(request.request_id)
        assert again.certificate_id == activated.certificate_id
        assert len(await gov_services.lifecycle.list_certificates()) == 1

    async def test_rejected_request_is_marked_failed(self, gov_services, fake_ca, subject):
        request = await request_government_certificate(gov_services, subject)
        fake_ca.state = "rejected"

        failed = await gov_services.lifecycle.poll_request(request.request_id)

        assert failed.status == RequestStatus.FAILED
        assert failed.failure_reason == "Documentacion incompleta"
        assert (await gov_services.lifecycle.get_request(request.request_id)).status == RequestStatus.FAILED

    async def test_certificate_for_another_key_is_refused(self, gov_services, fake_ca, csr_issuer, subject):
        request = await request_government_certificate(gov_services, subject)

        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        foreign_csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Otra Persona")]))
            .sign(other_key, hashes.SHA256())
            .public_bytes(Encoding.PEM)
            .decode()
        )
        fake_ca.csrs[request.external_id] = foreign_csr
        fake_ca.state = "issued"

        with pytest.raises(ProviderRejectedError):
            await gov_services.lifecycle.poll_request(request.request_id)
        assert (await gov_services.lifecycle.get_request(request.request_id)).status == RequestStatus.PENDING

    async def test_missing_identity_fields_are_rejected_before_any_request(self, gov_services, fake_ca):
        with pytest.raises(ValidationError) as exc_info:
            await request_government_certificate(gov_services, SubjectIdentity(nombre="Sin Cuil", dni="123"))

        assert exc_info.value.details["missing_fields"] == ["cuil"]
        assert fake_ca.csrs == {}

    async def test_unavailable_provider_persists_nothing(self, gov_services, fake_ca, store, subject):
        fake_ca.available = False

        with pytest.raises(ProviderUnavailableError):
            await request_government_certificate(gov_services, subject)

        assert store._requests == {}
        assert store._certificates == {}


class TestImport:

    async def test_import_trusted_government_container(self, services, government_certificate):
        assert government_certificate.origin == CertificateOrigin.IMPORTED
        assert government_certificate.provider == "imported"
        assert government_certificate.validity_level == ValidityLevel.GOVERNMENT
        assert government_certificate.subject.nombre == "Maria Gonzalez"
        assert government_certificate.subject.email == "maria.gonzalez@sanjuan.gob.ar"
        assert "CA Gubernamental Argentina" in government_certificate.issuer_dn

    async def test_untrusted_issuer_cannot_be_government(self, services, pkcs12_builder):
        with pytest.raises(ValidationError) as exc_info:
            await services.lifecycle.import_pkcs12(
                pkcs12_builder(issuer_name="CA Desconocida"),
                "secreto",
                owner_id="mgonzalez"
            )
        assert "trusted" in exc_info.value.message

    async def test_untrusted_issuer_imports_as_commercial(self, services, pkcs12_builder):
        certificate = await services.lifecycle.import_pkcs12(
            pkcs12_builder(issuer_name="CA Desconocida"),
            "secreto",
            owner_id="mgonzalez",
            certificate_type="commercial_ca"
        )
        assert certificate.validity_level == ValidityLevel.CORPORATE

    async def test_wrong_passphrase(self, services, pkcs12_builder):
        with pytest.raises(ValidationError):
            await services.lifecycle.import_pkcs12(pkcs12_builder(), "incorrecta", owner_id="mgonzalez")

    async def test_expired_container(self, services, pkcs12_builder):
        now = datetime.utcnow()
        data = pkcs12_builder(not_before=now - timedelta(days=400), not_after=now - timedelta(days=1))
        with pytest.raises(ValidationError) as exc_info:
            await services.lifecycle.import_pkcs12(data, "secreto", owner_id="mgonzalez")
        assert "expired" in exc_info.value.message

    async def test_weak_key_is_refused(self, services, pkcs12_builder):
        weak = rsa.generate_private_key(public_exponent=65537, key_size=1024)
        with pytest.raises(ValidationError) as exc_info:
            await services.lifecycle.import_pkcs12(pkcs12_builder(key=weak), "secreto", owner_id="mgonzalez")
        assert exc_info.value.details["key_size"] == 1024

    async def test_duplicate_import(self, services, pkcs12_builder):
        data = pkcs12_builder()
        await services.lifecycle.import_pkcs12(data, "secreto", owner_id="mgonzalez")
        with pytest.raises(ValidationError):
            await services.lifecycle.import_pkcs12(data, "secreto", owner_id="mgonzalez")


class TestRenewal:

    async def test_internal_renewal_retires_previous_certificate(self, services, internal_certificate):
        successor = await services.lifecycle.renew(internal_certificate.certificate_id)

        assert isinstance(successor, Certificate)
        assert successor.supersedes == internal_certificate.certificate_id
        assert successor.serial_number != internal_certificate.serial_number
        assert successor.subject == internal_certificate.subject

        previous = await services.lifecycle.get_certificate(internal_certificate.certificate_id)
        assert previous.retired
        assert previous.superseded_by == successor.certificate_id
        assert previous.operation_in_flight is None
        with pytest.raises(LifecycleError):
            services.lifecycle.ensure_signable(previous, DocumentClass.NO_OFICIAL)

    async def test_retired_certificate_cannot_be_renewed_again(self, services, internal_certificate):
        await services.lifecycle.renew(internal_certificate.certificate_id)
        with pytest.raises(LifecycleError):
            await services.lifecycle.renew(internal_certificate.certificate_id)

    async def test_two_phase_renewal_links_on_activation(self, gov_services, fake_ca, subject):
        request = await request_government_certificate(gov_services, subject)
        fake_ca.state = "issued"
        original_id = (await gov_services.lifecycle.poll_request(request.request_id)).certificate_id

        fake_ca.state = "pending"
        renewal = await gov_services.lifecycle.renew(original_id)
        assert isinstance(renewal, CertificateRequest)
        assert renewal.renews_certificate_id == original_id
        assert not (await gov_services.lifecycle.get_certificate(original_id)).retired

        fake_ca.state = "issued"
        activated = await gov_services.lifecycle.poll_request(renewal.request_id)

        previous = await gov_services.lifecycle.get_certificate(original_id)
        assert previous.retired
        assert previous.superseded_by == activated.certificate_id
        successor = await gov_services.lifecycle.get_certificate(activated.certificate_id)
        assert successor.supersedes == original_id

    async def test_imported_certificates_are_not_renewed(self, services, government_certificate):
        with pytest.raises(ValidationError):
            await services.lifecycle.renew(government_certificate.certificate_id)

    async def test_renewal_refused_while_operation_in_flight(self, services, internal_certificate):
        await services.store.update_certificate(internal_certificate.certificate_id, operation_in_flight="revocacion")
        with pytest.raises(CertificateOperationInProgressError):
            await services.lifecycle.renew(internal_certificate.certificate_id)


class TestRevocation:

    async def test_revoke_is_terminal_and_idempotent(self, services, internal_certificate):
        revoked = await services.lifecycle.revoke(internal_certificate.certificate_id, "baja del agente")

        assert revoked.status == CertificateStatus.REVOCADO
        assert revoked.revocation_reason == "baja del agente"
        assert revoked.revoked_at is not None
        assert revoked.operation_in_flight is None

        again = await services.lifecycle.revoke(internal_certificate.certificate_id, "otra razon")
        assert again.revocation_reason == "baja del agente"
        assert not services.lifecycle.is_valid_for_signing(again, DocumentClass.NO_OFICIAL)

    async def test_issued_certificate_is_revoked_at_provider(self, gov_services, fake_ca, subject):
        request = await request_government_certificate(gov_services, subject)
        fake_ca.state = "issued"
        certificate_id = (await gov_services.lifecycle.poll_request(request.request_id)).certificate_id

        await gov_services.lifecycle.revoke(certificate_id, "compromiso de clave")

        assert fake_ca.revoked == ["SOL-1"]

    async def test_provider_failure_leaves_certificate_usable(self, gov_services, fake_ca, subject):
        request = await request_government_certificate(gov_services, subject)
        fake_ca.state = "issued"
        certificate_id = (await gov_services.lifecycle.poll_request(request.request_id)).certificate_id

        fake_ca.available = False
        with pytest.raises(ProviderUnavailableError):
            await gov_services.lifecycle.revoke(certificate_id)

        certificate = await gov_services.lifecycle.get_certificate(certificate_id)
        assert certificate.status == CertificateStatus.VIGENTE
        assert certificate.operation_in_flight is None

    async def test_imported_certificate_is_revoked_locally(self, services, government_certificate):
        revoked = await services.lifecycle.revoke(government_certificate.certificate_id, "extravio")
        assert revoked.status == CertificateStatus.REVOCADO
