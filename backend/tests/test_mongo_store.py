"""
MongoStore against a live server.

Transactions need a replica set; the tests skip when the server is not
reachable or runs standalone. Point SIGEX_TEST_MONGODB_URL at another
deployment to run them elsewhere.
"""
import asyncio
import os

import pytest
from pymongo.errors import PyMongoError

from sigex.core.database import close_mongo_connection, connect_to_mongo
from sigex.core.exceptions import ConcurrentModificationError, NotFoundError
from sigex.models import (
    CertificateStatus,
    EstadoExpediente,
    EstadoFirma,
    SignatureRecord,
    WorkflowMovimiento
)
from sigex.store import MongoStore
from sigex.store.mongo_models import DOCUMENT_MODELS

TEST_MONGODB_URL = os.getenv(
    "SIGEX_TEST_MONGODB_URL",
    "mongodb://localhost:27017/?serverSelectionTimeoutMS=1000"
)
TEST_DATABASE_NAME = "sigex_test"


@pytest.fixture
async def store():
    try:
        client = await connect_to_mongo(TEST_MONGODB_URL, TEST_DATABASE_NAME)
        hello = await client.admin.command("hello")
    except PyMongoError as exc:
        await close_mongo_connection()
        pytest.skip(f"MongoDB not available: {exc}")
    if "setName" not in hello:
        await close_mongo_connection()
        pytest.skip("MongoDB is not running as a replica set")

    for model in DOCUMENT_MODELS:
        await model.delete_all()

    yield MongoStore(client)

    await close_mongo_connection()


class TestMongoExpedientes:

    async def test_create_and_read_back(self, services, store, expediente, oficinas):
        stored = await store.get_expediente(expediente.expediente_id)

        assert stored.numero_expediente == expediente.numero_expediente
        assert stored.oficina_actual_id == oficinas["mesa"].oficina_id
        assert [o.codigo for o in await store.list_oficinas()] == ["MESA", "LEG", "DESP"]
        assert [m.evento for m in await store.list_movimientos(expediente.expediente_id)] == ["crear"]

    async def test_fojas_are_consecutive(self, services, expediente, add_document):
        first = await add_document(expediente.expediente_id, "a.pdf")
        concurrent = await asyncio.gather(*[
            add_document(expediente.expediente_id, f"doc-{i}.pdf") for i in range(4)
        ])

        assert first.numero_foja == 1
        assert sorted(d.numero_foja for d in concurrent) == [2, 3, 4, 5]
        stored = await services.workflow.documentos(expediente.expediente_id)
        assert [d.numero_foja for d in stored] == [1, 2, 3, 4, 5]

    async def test_stale_version_rolls_back_whole_transaction(self, store, expediente):
        async def apply(tx):
            current = await tx.get_expediente()
            await tx.insert_movimiento(WorkflowMovimiento(
                expediente_id=expediente.expediente_id,
                oficina_origen_id=current.oficina_actual_id,
                oficina_destino_id=current.oficina_actual_id,
                estado_anterior=current.estado,
                estado_nuevo=EstadoExpediente.EN_TRAMITE,
                evento="agregar_documento",
                usuario_movimiento="jperez"
            ))
            await tx.update_expediente(current.version + 1, estado=EstadoExpediente.EN_TRAMITE)

        with pytest.raises(ConcurrentModificationError):
            await store.run_in_expediente_transaction(expediente.expediente_id, apply)

        assert (await store.get_expediente(expediente.expediente_id)).estado == EstadoExpediente.INICIADO
        assert len(await store.list_movimientos(expediente.expediente_id)) == 1

    async def test_conditional_document_update(self, store, expediente, add_document):
        document = await add_document(expediente.expediente_id)

        async def reject(tx):
            return await tx.update_document(document.document_id, EstadoFirma.PENDIENTE, estado_firma=EstadoFirma.RECHAZADO)

        assert (await store.run_in_expediente_transaction(expediente.expediente_id, reject)).estado_firma == EstadoFirma.RECHAZADO
        with pytest.raises(ConcurrentModificationError):
            await store.run_in_expediente_transaction(expediente.expediente_id, reject)


class TestMongoSigning:

    async def test_sign_and_send(self, services, store, oficinas, expediente, add_document, internal_certificate):
        document = await add_document(expediente.expediente_id)
        record = await services.signing.sign_document(document.document_id, internal_certificate.certificate_id, "jperez")

        assert await store.get_signature(record.signature_id) == record
        assert await store.list_signatures_for_document(document.document_id) == [record]

        sent = await services.workflow.enviar(expediente.expediente_id, oficinas["legales"].oficina_id, "jperez")
        assert sent.estado == EstadoExpediente.DERIVADO
        assert sent.version == expediente.version + 2

    async def test_certificate_lookup_and_update(self, store, internal_certificate):
        found = await store.find_certificate_by_serial(internal_certificate.serial_number)
        assert found.certificate_id == internal_certificate.certificate_id
        assert found.encrypted_private_key == internal_certificate.encrypted_private_key

        updated = await store.update_certificate(internal_certificate.certificate_id, retired=True)
        assert updated.retired
        assert [c.certificate_id for c in await store.list_certificates("jperez")] == [internal_certificate.certificate_id]

    async def test_concurrent_certificate_updates_touch_only_their_fields(self, store, internal_certificate):
        await asyncio.gather(
            store.update_certificate(internal_certificate.certificate_id, operation_in_flight="revocacion"),
            store.update_certificate(internal_certificate.certificate_id, status=CertificateStatus.POR_VENCER),
        )

        stored = await store.get_certificate(internal_certificate.certificate_id)
        assert stored.operation_in_flight == "revocacion"
        assert stored.status == CertificateStatus.POR_VENCER

        with pytest.raises(NotFoundError):
            await store.update_certificate("no-existe", retired=True)

    async def test_signature_rolls_back_with_document_update(self, store, expediente, add_document, internal_certificate):
        document = await add_document(expediente.expediente_id)
        record = SignatureRecord(
            document_hash=document.content_hash,
            signature_hex="00",
            algorithm="RSA-SHA256",
            certificate_serial=internal_certificate.serial_number,
            public_key_pem=internal_certificate.public_key_pem,
            document_ids=[document.document_id]
        )

        async def apply(tx):
            await tx.insert_signature(record)
            await tx.update_document(document.document_id, EstadoFirma.FIRMADO, signature_id=record.signature_id)

        with pytest.raises(ConcurrentModificationError):
            await store.run_in_expediente_transaction(expediente.expediente_id, apply)
        assert await store.get_signature(record.signature_id) is None


class TestMongoNumbering:

    async def test_sequence_per_year(self, store):
        assert [await store.next_numero_sequence(2030) for _ in range(3)] == [1, 2, 3]
        assert await store.next_numero_sequence(2031) == 1

    async def test_taken_number_is_a_concurrency_error(self, services, oficinas, expediente):
        with pytest.raises(ConcurrentModificationError):
            await services.store.create_expediente(
                expediente.model_copy(update={"expediente_id": "otro-id"}),
                WorkflowMovimiento(
                    expediente_id="otro-id",
                    oficina_destino_id=oficinas["mesa"].oficina_id,
                    estado_nuevo=EstadoExpediente.INICIADO,
                    evento="crear",
                    usuario_movimiento="jperez"
                )
            )

    async def test_removed_document_keeps_foja_counter(self, services, store, expediente, add_document, blob_storage):
        document = await add_document(expediente.expediente_id)
        await services.workflow.eliminar_documento(expediente.expediente_id, document.document_id, "jperez")

        assert await store.get_document(document.document_id) is None
        assert document.archivo_key not in blob_storage._blobs
        assert (await add_document(expediente.expediente_id)).numero_foja == 2
