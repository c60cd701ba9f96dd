"""
MongoDB implementation of the durable store.

Expediente transactions use Motor client sessions
(``ClientSession.with_transaction``), so the server must run as a replica
set. Transient write conflicts make Motor re-run the transaction callback;
the retried callback sees the committed state and fails the version checks
when another writer got there first.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Type, TypeVar

from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..core.exceptions import ConcurrentModificationError, NotFoundError
from ..models import (
    Certificate,
    CertificateRequest,
    SignatureRecord,
    Oficina,
    Expediente,
    ExpedienteDocument,
    EstadoExpediente,
    EstadoFirma,
    WorkflowMovimiento
)
from .base import DurableStore, ExpedienteTransaction
from .mongo_models import (
    CertificateModel,
    CertificateRequestModel,
    SignatureRecordModel,
    OficinaModel,
    ExpedienteModel,
    ExpedienteCounterModel,
    ExpedienteDocumentModel,
    WorkflowMovimientoModel
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def _to_domain(model_cls: Type[M], doc) -> Optional[M]:
    if doc is None:
        return None
    return model_cls.model_validate(doc.model_dump(exclude={"id", "revision_id"}))


def _apply(doc, changes: dict):
    for field, value in changes.items():
        setattr(doc, field, value)


def _bson_value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


async def _set_fields(model_cls, document_cls: Type[M], key: str, key_value: str, changes: dict) -> M:
    """Single-document $set; fields not named in ``changes`` are left alone"""
    changes.setdefault("updated_at", datetime.utcnow())
    raw = await model_cls.get_motor_collection().find_one_and_update(
        {key: key_value},
        {"$set": {field: _bson_value(value) for field, value in changes.items()}},
        return_document=ReturnDocument.AFTER
    )
    if raw is None:
        raise NotFoundError(document_cls.__name__, key_value)
    return document_cls.model_validate(raw)


class _MongoExpedienteTransaction(ExpedienteTransaction):

    def __init__(self, expediente_id: str, session):
        self._expediente_id = expediente_id
        self._session = session

    async def _load_expediente(self) -> ExpedienteModel:
        doc = await ExpedienteModel.find_one(
            ExpedienteModel.expediente_id == self._expediente_id,
            session=self._session
        )
        if doc is None:
            raise NotFoundError("Expediente", self._expediente_id)
        return doc

    async def get_expediente(self) -> Expediente:
        return _to_domain(Expediente, await self._load_expediente())

    async def next_foja(self) -> int:
        raw = await ExpedienteModel.get_motor_collection().find_one_and_update(
            {"expediente_id": self._expediente_id},
            {"$inc": {"ultima_foja": 1}},
            return_document=ReturnDocument.AFTER,
            session=self._session
        )
        if raw is None:
            raise NotFoundError("Expediente", self._expediente_id)
        return raw["ultima_foja"]

    async def list_documents(self) -> List[ExpedienteDocument]:
        docs = await ExpedienteDocumentModel.find(
            ExpedienteDocumentModel.expediente_id == self._expediente_id,
            session=self._session
        ).sort("+numero_foja").to_list()
        return [_to_domain(ExpedienteDocument, d) for d in docs]

    async def insert_document(self, document: ExpedienteDocument) -> ExpedienteDocument:
        await ExpedienteDocumentModel(**document.model_dump()).insert(session=self._session)
        return document

    async def update_document(self, document_id: str, expected_estado_firma: EstadoFirma, **changes: Any) -> ExpedienteDocument:
        doc = await ExpedienteDocumentModel.find_one(
            ExpedienteDocumentModel.document_id == document_id,
            ExpedienteDocumentModel.expediente_id == self._expediente_id,
            session=self._session
        )
        if doc is None:
            raise NotFoundError("ExpedienteDocument", document_id)
        if doc.estado_firma != expected_estado_firma:
            raise ConcurrentModificationError(
                f"Document {document_id} is {doc.estado_firma.value}, expected {expected_estado_firma.value}",
                {"document_id": document_id, "estado_firma": doc.estado_firma.value}
            )
        _apply(doc, changes)
        await doc.save(session=self._session)
        return _to_domain(ExpedienteDocument, doc)

    async def delete_document(self, document_id: str, expected_estado_firma: EstadoFirma) -> ExpedienteDocument:
        doc = await ExpedienteDocumentModel.find_one(
            ExpedienteDocumentModel.document_id == document_id,
            ExpedienteDocumentModel.expediente_id == self._expediente_id,
            session=self._session
        )
        if doc is None:
            raise NotFoundError("ExpedienteDocument", document_id)
        if doc.estado_firma != expected_estado_firma:
            raise ConcurrentModificationError(
                f"Document {document_id} is {doc.estado_firma.value}, expected {expected_estado_firma.value}",
                {"document_id": document_id, "estado_firma": doc.estado_firma.value}
            )
        await doc.delete(session=self._session)
        return _to_domain(ExpedienteDocument, doc)

    async def update_expediente(self, expected_version: int, **changes: Any) -> Expediente:
        doc = await self._load_expediente()
        if doc.version != expected_version:
            raise ConcurrentModificationError(
                f"Expediente {self._expediente_id} was modified concurrently",
                {"expediente_id": self._expediente_id, "expected_version": expected_version,
                 "current_version": doc.version}
            )
        changes.setdefault("updated_at", datetime.utcnow())
        _apply(doc, changes)
        doc.version = expected_version + 1
        await doc.save(session=self._session)
        return _to_domain(Expediente, doc)

    async def insert_movimiento(self, movimiento: WorkflowMovimiento) -> WorkflowMovimiento:
        await WorkflowMovimientoModel(**movimiento.model_dump()).insert(session=self._session)
        return movimiento

    async def insert_signature(self, record: SignatureRecord) -> SignatureRecord:
        await SignatureRecordModel(**record.model_dump()).insert(session=self._session)
        return record


class MongoStore(DurableStore):
    """DurableStore over Beanie documents; requires connect_to_mongo() first"""

    def __init__(self, client: AsyncIOMotorClient):
        self.client = client

    # Certificates

    async def insert_certificate(self, certificate: Certificate) -> Certificate:
        await CertificateModel(**certificate.model_dump()).insert()
        return certificate

    async def get_certificate(self, certificate_id: str) -> Optional[Certificate]:
        doc = await CertificateModel.find_one(CertificateModel.certificate_id == certificate_id)
        return _to_domain(Certificate, doc)

    async def find_certificate_by_serial(self, serial_number: str) -> Optional[Certificate]:
        doc = await CertificateModel.find_one(CertificateModel.serial_number == serial_number)
        return _to_domain(Certificate, doc)

    async def list_certificates(self, owner_id: Optional[str] = None) -> List[Certificate]:
        query = CertificateModel.find(CertificateModel.owner_id == owner_id) if owner_id else CertificateModel.find_all()
        return [_to_domain(Certificate, d) for d in await query.to_list()]

    async def update_certificate(self, certificate_id: str, **changes: Any) -> Certificate:
        return await _set_fields(CertificateModel, Certificate, "certificate_id", certificate_id, changes)

    # Certificate requests

    async def insert_certificate_request(self, request: CertificateRequest) -> CertificateRequest:
        await CertificateRequestModel(**request.model_dump()).insert()
        return request

    async def get_certificate_request(self, request_id: str) -> Optional[CertificateRequest]:
        doc = await CertificateRequestModel.find_one(CertificateRequestModel.request_id == request_id)
        return _to_domain(CertificateRequest, doc)

    async def update_certificate_request(self, request_id: str, **changes: Any) -> CertificateRequest:
        return await _set_fields(CertificateRequestModel, CertificateRequest, "request_id", request_id, changes)

    # Signatures

    async def insert_signature(self, record: SignatureRecord) -> SignatureRecord:
        await SignatureRecordModel(**record.model_dump()).insert()
        return record

    async def get_signature(self, signature_id: str) -> Optional[SignatureRecord]:
        doc = await SignatureRecordModel.find_one(SignatureRecordModel.signature_id == signature_id)
        return _to_domain(SignatureRecord, doc)

    async def list_signatures_for_document(self, document_id: str) -> List[SignatureRecord]:
        docs = await SignatureRecordModel.find(
            {"document_ids": document_id}
        ).sort("+timestamp").to_list()
        return [_to_domain(SignatureRecord, d) for d in docs]

    # Oficinas

    async def insert_oficina(self, oficina: Oficina) -> Oficina:
        await OficinaModel(**oficina.model_dump()).insert()
        return oficina

    async def get_oficina(self, oficina_id: str) -> Optional[Oficina]:
        doc = await OficinaModel.find_one(OficinaModel.oficina_id == oficina_id)
        return _to_domain(Oficina, doc)

    async def list_oficinas(self, activa: Optional[bool] = None) -> List[Oficina]:
        query = OficinaModel.find_all() if activa is None else OficinaModel.find(OficinaModel.activa == activa)
        return [_to_domain(Oficina, d) for d in await query.to_list()]

    # Expedientes

    async def create_expediente(self, expediente: Expediente, movimiento: WorkflowMovimiento) -> Expediente:
        async def callback(session):
            await ExpedienteModel(**expediente.model_dump()).insert(session=session)
            await WorkflowMovimientoModel(**movimiento.model_dump()).insert(session=session)

        try:
            async with await self.client.start_session() as session:
                await session.with_transaction(callback)
        except DuplicateKeyError as e:
            raise ConcurrentModificationError(
                f"Expediente number {expediente.numero_expediente} was taken concurrently",
                {"numero_expediente": expediente.numero_expediente, "reason": str(e)}
            )
        return expediente

    async def next_numero_sequence(self, year: int) -> int:
        raw = await ExpedienteCounterModel.get_motor_collection().find_one_and_update(
            {"year": year},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return raw["seq"]

    async def get_expediente(self, expediente_id: str) -> Optional[Expediente]:
        doc = await ExpedienteModel.find_one(ExpedienteModel.expediente_id == expediente_id)
        return _to_domain(Expediente, doc)

    async def list_expedientes(
        self,
        oficina_id: Optional[str] = None,
        estado: Optional[EstadoExpediente] = None
    ) -> List[Expediente]:
        filters = {}
        if oficina_id:
            filters["oficina_actual_id"] = oficina_id
        if estado:
            filters["estado"] = estado.value
        docs = await ExpedienteModel.find(filters).sort("+created_at").to_list()
        return [_to_domain(Expediente, d) for d in docs]

    async def get_document(self, document_id: str) -> Optional[ExpedienteDocument]:
        doc = await ExpedienteDocumentModel.find_one(ExpedienteDocumentModel.document_id == document_id)
        return _to_domain(ExpedienteDocument, doc)

    async def list_documents(self, expediente_id: str) -> List[ExpedienteDocument]:
        docs = await ExpedienteDocumentModel.find(
            ExpedienteDocumentModel.expediente_id == expediente_id
        ).sort("+numero_foja").to_list()
        return [_to_domain(ExpedienteDocument, d) for d in docs]

    async def list_movimientos(self, expediente_id: str) -> List[WorkflowMovimiento]:
        docs = await WorkflowMovimientoModel.find(
            WorkflowMovimientoModel.expediente_id == expediente_id
        ).sort("+fecha_movimiento").to_list()
        return [_to_domain(WorkflowMovimiento, d) for d in docs]

    async def run_in_expediente_transaction(
        self,
        expediente_id: str,
        callback: Callable[[ExpedienteTransaction], Awaitable[T]]
    ) -> T:
        async def run(session):
            return await callback(_MongoExpedienteTransaction(expediente_id, session))

        async with await self.client.start_session() as session:
            return await session.with_transaction(run)

    async def close(self):
        self.client.close()
