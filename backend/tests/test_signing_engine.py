import hashlib
import json
from datetime import datetime, timedelta

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from sigex.core.exceptions import (
    IncompatibleCertificateError,
    IntegrityError,
    InvalidTransitionError,
    LifecycleError,
    ValidationError
)
from sigex.models import CertificateStatus, DocumentClass, EstadoFirma, TipoDocumento
from sigex.services.signature import signing_engine
from sigex.services.signature.hashing import combined_hash, document_hash
from sigex.services.storage import BlobStorage


def no_signature(*args, **kwargs):
    raise AssertionError("private key was used")


@pytest.fixture
def forbid_crypto(services, monkeypatch):
    """Fail the test if content is hashed or a signature is computed"""
    def no_hash(*args, **kwargs):
        raise AssertionError("content was hashed")

    monkeypatch.setattr(services.signing, "_sign_digest", no_signature)
    monkeypatch.setattr(signing_engine, "document_hash", no_hash)


class TestHashing:

    def test_document_hash_is_hex_sha256(self):
        assert document_hash(b"expediente") == hashlib.sha256(b"expediente").hexdigest()

    def test_document_hash_requires_bytes(self):
        with pytest.raises(ValidationError):
            document_hash("texto")

    def test_combined_hash_depends_on_order(self):
        a, b = document_hash(b"uno"), document_hash(b"dos")
        assert combined_hash([a, b]) == hashlib.sha256((a + b).encode()).hexdigest()
        assert combined_hash([a, b]) != combined_hash([b, a])


class TestSignRaw:

    async def test_sign_with_internal_certificate(self, services, internal_certificate):
        record = await services.signing.sign(b"contenido", internal_certificate, DocumentClass.NO_OFICIAL, "jperez")

        assert record.document_hash == document_hash(b"contenido")
        assert record.algorithm == "RSA-SHA256"
        assert record.certificate_serial == internal_certificate.serial_number
        assert record.public_key_pem == internal_certificate.public_key_pem
        assert record.signer_id == "jperez"
        assert await services.store.get_signature(record.signature_id) == record

        exported = json.dumps(record.export())
        assert "PRIVATE KEY" not in exported

    async def test_export_timestamp_carries_utc_offset(self, services, internal_certificate):
        record = await services.signing.sign(b"contenido", internal_certificate, DocumentClass.NO_OFICIAL, "jperez")

        exported = datetime.fromisoformat(record.export()["timestamp"])
        assert exported.utcoffset() == timedelta(0)
        assert exported.replace(tzinfo=None) == record.timestamp

    async def test_sign_with_ec_government_certificate(self, services, pkcs12_builder):
        certificate = await services.lifecycle.import_pkcs12(
            pkcs12_builder(key=ec.generate_private_key(ec.SECP256R1())),
            "secreto",
            owner_id="mgonzalez"
        )

        record = await services.signing.sign(b"resolucion", certificate, DocumentClass.OFICIAL, "mgonzalez")

        assert record.algorithm == "ECDSA-SHA256"
        assert (await services.verifier.verify(b"resolucion", record)).valid

    async def test_official_document_with_internal_certificate_fails_fast(
        self, services, internal_certificate, store, forbid_crypto
    ):
        with pytest.raises(IncompatibleCertificateError):
            await services.signing.sign(b"oficio", internal_certificate, DocumentClass.OFICIAL, "jperez")
        assert store._signatures == {}

    async def test_revoked_certificate_cannot_sign(self, services, internal_certificate, forbid_crypto):
        await services.lifecycle.revoke(internal_certificate.certificate_id, "baja")

        with pytest.raises(LifecycleError) as exc_info:
            await services.signing.sign(b"nota", internal_certificate, DocumentClass.NO_OFICIAL, "jperez")
        assert exc_info.value.status == "revocado"

    async def test_each_signature_is_a_new_record(self, services, internal_certificate):
        first = await services.signing.sign(b"nota", internal_certificate, DocumentClass.NO_OFICIAL)
        second = await services.signing.sign(b"nota", internal_certificate, DocumentClass.NO_OFICIAL)

        assert first.signature_id != second.signature_id
        assert first.document_hash == second.document_hash


class TestSignBatch:

    async def test_batch_signs_combined_hash_in_order(self, services, internal_certificate):
        documents = [b"foja 1", b"foja 2", b"foja 3"]
        record = await services.signing.sign_batch(documents, internal_certificate, DocumentClass.NO_OFICIAL, "jperez")

        hashes = [document_hash(d) for d in documents]
        assert record.is_batch
        assert record.document_hashes == hashes
        assert record.document_hash == combined_hash(hashes)
        assert (await services.verifier.verify_batch(documents, record)).valid

    async def test_empty_batch_is_rejected(self, services, internal_certificate):
        with pytest.raises(ValidationError):
            await services.signing.sign_batch([], internal_certificate, DocumentClass.NO_OFICIAL)

    async def test_batch_entries_must_be_bytes(self, services, internal_certificate):
        with pytest.raises(ValidationError) as exc_info:
            await services.signing.sign_batch([b"ok", None], internal_certificate, DocumentClass.NO_OFICIAL)
        assert "1" in exc_info.value.message


class TestExpedienteDocuments:

    async def test_sign_document_marks_firmado_and_writes_artifact(
        self, services, expediente, add_document, internal_certificate, blob_storage
    ):
        document = await add_document(expediente.expediente_id, "Informe.pdf", tipo=TipoDocumento.INFORME)

        record = await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")

        signed = await services.store.get_document(document.document_id)
        assert signed.estado_firma == EstadoFirma.FIRMADO
        assert signed.signature_id == record.signature_id
        assert signed.usuario_firmante == "jperez"
        assert signed.archivo_firmado_key == BlobStorage.signed_artifact_key(document.archivo_key, record.signature_id)
        assert record.document_ids == [document.document_id]

        artifact = json.loads(await blob_storage.get(signed.archivo_firmado_key))
        assert artifact["signature_id"] == record.signature_id
        assert artifact["document_hash"] == document.content_hash

        # Original bytes are untouched
        assert await blob_storage.get(document.archivo_key) == b"contenido de Informe.pdf"
        assert await services.signing.signatures_for_document(document.document_id) == [record]

    async def test_official_document_with_internal_certificate_stays_pending(
        self, services, expediente, add_document, internal_certificate
    ):
        document = await add_document(expediente.expediente_id, "Resolucion.pdf", tipo=TipoDocumento.RESOLUCION)

        with pytest.raises(IncompatibleCertificateError):
            await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")

        assert (await services.store.get_document(document.document_id)).estado_firma == EstadoFirma.PENDIENTE

    async def test_official_document_with_government_certificate(
        self, services, expediente, add_document, government_certificate
    ):
        document = await add_document(expediente.expediente_id, "Dictamen.pdf", tipo=TipoDocumento.DICTAMEN)

        await services.signing.sign_document(document.document_id, government_certificate.certificate_id, "mgonzalez")

        assert (await services.store.get_document(document.document_id)).estado_firma == EstadoFirma.FIRMADO

    async def test_expired_certificate_is_marked_vencido(
        self, services, expediente, add_document, internal_certificate
    ):
        document = await add_document(expediente.expediente_id)
        await services.store.update_certificate(
            internal_certificate.certificate_id,
            fecha_expiracion=datetime.utcnow() - timedelta(days=1)
        )

        with pytest.raises(LifecycleError) as exc_info:
            await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")

        assert exc_info.value.status == "vencido"
        certificate = await services.store.get_certificate(internal_certificate.certificate_id)
        assert certificate.status == CertificateStatus.VENCIDO
        assert (await services.store.get_document(document.document_id)).estado_firma == EstadoFirma.PENDIENTE

    async def test_tampered_content_is_not_signed(
        self, services, store, expediente, add_document, internal_certificate, blob_storage, monkeypatch
    ):
        document = await add_document(expediente.expediente_id)
        await blob_storage.put(document.archivo_key, b"contenido alterado")
        monkeypatch.setattr(services.signing, "_sign_digest", no_signature)

        with pytest.raises(IntegrityError):
            await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")
        assert store._signatures == {}
        assert (await store.get_document(document.document_id)).estado_firma == EstadoFirma.PENDIENTE

    async def test_certificate_tier_is_checked_before_content(
        self, services, expediente, add_document, internal_certificate, blob_storage, forbid_crypto
    ):
        document = await add_document(expediente.expediente_id, "Resolucion.pdf", tipo=TipoDocumento.RESOLUCION)
        await blob_storage.put(document.archivo_key, b"contenido alterado")

        with pytest.raises(IncompatibleCertificateError):
            await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")

    async def test_re_signing_creates_another_record(
        self, services, expediente, add_document, internal_certificate, blob_storage
    ):
        document = await add_document(expediente.expediente_id)
        first = await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")
        second = await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")

        assert first.signature_id != second.signature_id
        records = await services.signing.signatures_for_document(document.document_id)
        assert {r.signature_id for r in records} == {first.signature_id, second.signature_id}
        assert (await services.store.get_document(document.document_id)).signature_id == second.signature_id

        first_artifact = BlobStorage.signed_artifact_key(document.archivo_key, first.signature_id)
        assert json.loads(await blob_storage.get(first_artifact))["signature_id"] == first.signature_id


class TestRejection:

    async def test_reject_pending_document(self, services, expediente, add_document, internal_certificate):
        document = await add_document(expediente.expediente_id)

        rejected = await services.signing.reject_document(document.document_id, "director", "Falta firma del area")

        assert rejected.estado_firma == EstadoFirma.RECHAZADO
        assert rejected.motivo_rechazo == "Falta firma del area"

        with pytest.raises(InvalidTransitionError):
            await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")
        with pytest.raises(InvalidTransitionError):
            await services.signing.reject_document(document.document_id, "director", "otra vez")

    async def test_signed_document_cannot_be_rejected(self, services, expediente, add_document, internal_certificate):
        document = await add_document(expediente.expediente_id)
        await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")

        with pytest.raises(InvalidTransitionError):
            await services.signing.reject_document(document.document_id, "director", "tarde")


class TestExpedienteBatch:

    async def test_batch_signs_pending_documents_in_foja_order(
        self, services, expediente, add_document, internal_certificate
    ):
        documents = [await add_document(expediente.expediente_id, f"anexo-{i}.pdf") for i in range(3)]

        record = await services.signing.sign_expediente_batch(
            expediente.expediente_id,
            internal_certificate.certificate_id,
            "jperez"
        )

        assert record.document_ids == [d.document_id for d in documents]
        assert record.document_hashes == [d.content_hash for d in documents]
        for document in await services.workflow.documentos(expediente.expediente_id):
            assert document.estado_firma == EstadoFirma.FIRMADO
            assert document.signature_id == record.signature_id
        assert await services.workflow.pending_documents(expediente.expediente_id) == []

    async def test_batch_with_official_document_needs_government_certificate(
        self, services, expediente, add_document, internal_certificate, forbid_crypto
    ):
        await add_document(expediente.expediente_id, "nota.pdf")
        await add_document(expediente.expediente_id, "oficio.pdf", tipo=TipoDocumento.OFICIAL)

        with pytest.raises(IncompatibleCertificateError):
            await services.signing.sign_expediente_batch(
                expediente.expediente_id,
                internal_certificate.certificate_id,
                "jperez"
            )
        assert len(await services.workflow.pending_documents(expediente.expediente_id)) == 2

    async def test_nothing_to_sign(self, services, expediente, internal_certificate):
        with pytest.raises(ValidationError):
            await services.signing.sign_expediente_batch(
                expediente.expediente_id,
                internal_certificate.certificate_id,
                "jperez"
            )
