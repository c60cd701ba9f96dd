"""
In-process store for local development and tests.

Transactions hold a per-expediente lock and stage their writes; the staged
writes are applied only when the callback returns.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from ..core.exceptions import ConcurrentModificationError, NotFoundError
from ..core.locks import KeyedLock
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

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class _MemoryExpedienteTransaction(ExpedienteTransaction):

    def __init__(self, store: "InMemoryStore", expediente_id: str):
        self._store = store
        self._expediente_id = expediente_id
        self._expediente: Optional[Expediente] = None
        self._new_documents: Dict[str, ExpedienteDocument] = {}
        self._updated_documents: Dict[str, ExpedienteDocument] = {}
        self._movimientos: List[WorkflowMovimiento] = []
        self._signatures: List[SignatureRecord] = []
        self._deleted_documents: Set[str] = set()

    async def _staged_expediente(self) -> Expediente:
        if self._expediente is None:
            current = self._store._expedientes.get(self._expediente_id)
            if current is None:
                raise NotFoundError("Expediente", self._expediente_id)
            self._expediente = _copy(current)
        return self._expediente

    async def get_expediente(self) -> Expediente:
        return _copy(await self._staged_expediente())

    async def next_foja(self) -> int:
        expediente = await self._staged_expediente()
        expediente.ultima_foja += 1
        return expediente.ultima_foja

    def _visible_document(self, document_id: str) -> Optional[ExpedienteDocument]:
        if document_id in self._deleted_documents:
            return None
        if document_id in self._new_documents:
            return self._new_documents[document_id]
        if document_id in self._updated_documents:
            return self._updated_documents[document_id]
        current = self._store._documents.get(document_id)
        if current is not None and current.expediente_id == self._expediente_id:
            return current
        return None

    @staticmethod
    def _check_estado(document: ExpedienteDocument, expected_estado_firma: EstadoFirma):
        if document.estado_firma != expected_estado_firma:
            raise ConcurrentModificationError(
                f"Document {document.document_id} is {document.estado_firma.value}, expected {expected_estado_firma.value}",
                {"document_id": document.document_id, "estado_firma": document.estado_firma.value}
            )

    async def list_documents(self) -> List[ExpedienteDocument]:
        documents = {
            doc.document_id: doc
            for doc in self._store._documents.values()
            if doc.expediente_id == self._expediente_id
        }
        documents.update(self._updated_documents)
        documents.update(self._new_documents)
        for document_id in self._deleted_documents:
            documents.pop(document_id, None)
        return sorted((_copy(d) for d in documents.values()), key=lambda d: d.numero_foja)

    async def insert_document(self, document: ExpedienteDocument) -> ExpedienteDocument:
        self._new_documents[document.document_id] = _copy(document)
        return _copy(document)

    async def update_document(self, document_id: str, expected_estado_firma: EstadoFirma, **changes: Any) -> ExpedienteDocument:
        current = self._visible_document(document_id)
        if current is None:
            raise NotFoundError("ExpedienteDocument", document_id)
        self._check_estado(current, expected_estado_firma)
        updated = current.model_copy(update=changes, deep=True)
        if document_id in self._new_documents:
            self._new_documents[document_id] = updated
        else:
            self._updated_documents[document_id] = updated
        return _copy(updated)

    async def delete_document(self, document_id: str, expected_estado_firma: EstadoFirma) -> ExpedienteDocument:
        current = self._visible_document(document_id)
        if current is None:
            raise NotFoundError("ExpedienteDocument", document_id)
        self._check_estado(current, expected_estado_firma)
        self._new_documents.pop(document_id, None)
        self._updated_documents.pop(document_id, None)
        self._deleted_documents.add(document_id)
        return _copy(current)

    async def update_expediente(self, expected_version: int, **changes: Any) -> Expediente:
        expediente = await self._staged_expediente()
        if expediente.version != expected_version:
            raise ConcurrentModificationError(
                f"Expediente {self._expediente_id} was modified concurrently",
                {"expediente_id": self._expediente_id, "expected_version": expected_version,
                 "current_version": expediente.version}
            )
        changes.setdefault("updated_at", datetime.utcnow())
        self._expediente = expediente.model_copy(update={**changes, "version": expediente.version + 1}, deep=True)
        return _copy(self._expediente)

    async def insert_movimiento(self, movimiento: WorkflowMovimiento) -> WorkflowMovimiento:
        self._movimientos.append(_copy(movimiento))
        return _copy(movimiento)

    async def insert_signature(self, record: SignatureRecord) -> SignatureRecord:
        self._signatures.append(_copy(record))
        return _copy(record)

    def commit(self):
        if self._expediente is not None:
            self._store._expedientes[self._expediente_id] = self._expediente
        self._store._documents.update(self._updated_documents)
        self._store._documents.update(self._new_documents)
        self._store._movimientos.extend(self._movimientos)
        for document_id in self._deleted_documents:
            self._store._documents.pop(document_id, None)
        for record in self._signatures:
            self._store._signatures[record.signature_id] = record


class InMemoryStore(DurableStore):
    """Dictionary-backed DurableStore"""

    def __init__(self):
        self._certificates: Dict[str, Certificate] = {}
        self._requests: Dict[str, CertificateRequest] = {}
        self._signatures: Dict[str, SignatureRecord] = {}
        self._oficinas: Dict[str, Oficina] = {}
        self._expedientes: Dict[str, Expediente] = {}
        self._documents: Dict[str, ExpedienteDocument] = {}
        self._movimientos: List[WorkflowMovimiento] = []
        self._numero_sequences: Dict[int, int] = {}
        self._expediente_locks = KeyedLock()

    # Certificates

    async def insert_certificate(self, certificate: Certificate) -> Certificate:
        self._certificates[certificate.certificate_id] = _copy(certificate)
        return _copy(certificate)

    async def get_certificate(self, certificate_id: str) -> Optional[Certificate]:
        return _copy(self._certificates.get(certificate_id))

    async def find_certificate_by_serial(self, serial_number: str) -> Optional[Certificate]:
        for certificate in self._certificates.values():
            if certificate.serial_number == serial_number:
                return _copy(certificate)
        return None

    async def list_certificates(self, owner_id: Optional[str] = None) -> List[Certificate]:
        return [
            _copy(c) for c in self._certificates.values()
            if owner_id is None or c.owner_id == owner_id
        ]

    async def update_certificate(self, certificate_id: str, **changes: Any) -> Certificate:
        current = self._certificates.get(certificate_id)
        if current is None:
            raise NotFoundError("Certificate", certificate_id)
        changes.setdefault("updated_at", datetime.utcnow())
        self._certificates[certificate_id] = current.model_copy(update=changes, deep=True)
        return _copy(self._certificates[certificate_id])

    # Certificate requests

    async def insert_certificate_request(self, request: CertificateRequest) -> CertificateRequest:
        self._requests[request.request_id] = _copy(request)
        return _copy(request)

    async def get_certificate_request(self, request_id: str) -> Optional[CertificateRequest]:
        return _copy(self._requests.get(request_id))

    async def update_certificate_request(self, request_id: str, **changes: Any) -> CertificateRequest:
        current = self._requests.get(request_id)
        if current is None:
            raise NotFoundError("CertificateRequest", request_id)
        changes.setdefault("updated_at", datetime.utcnow())
        self._requests[request_id] = current.model_copy(update=changes, deep=True)
        return _copy(self._requests[request_id])

    # Signatures

    async def insert_signature(self, record: SignatureRecord) -> SignatureRecord:
        self._signatures[record.signature_id] = _copy(record)
        return _copy(record)

    async def get_signature(self, signature_id: str) -> Optional[SignatureRecord]:
        return _copy(self._signatures.get(signature_id))

    async def list_signatures_for_document(self, document_id: str) -> List[SignatureRecord]:
        records = [r for r in self._signatures.values() if document_id in r.document_ids]
        return [_copy(r) for r in sorted(records, key=lambda r: r.timestamp)]

    # Oficinas

    async def insert_oficina(self, oficina: Oficina) -> Oficina:
        self._oficinas[oficina.oficina_id] = _copy(oficina)
        return _copy(oficina)

    async def get_oficina(self, oficina_id: str) -> Optional[Oficina]:
        return _copy(self._oficinas.get(oficina_id))

    async def list_oficinas(self, activa: Optional[bool] = None) -> List[Oficina]:
        return [
            _copy(o) for o in self._oficinas.values()
            if activa is None or o.activa == activa
        ]

    # Expedientes

    async def create_expediente(self, expediente: Expediente, movimiento: WorkflowMovimiento) -> Expediente:
        if any(e.numero_expediente == expediente.numero_expediente for e in self._expedientes.values()):
            raise ConcurrentModificationError(
                f"Expediente number {expediente.numero_expediente} was taken concurrently",
                {"numero_expediente": expediente.numero_expediente}
            )
        self._expedientes[expediente.expediente_id] = _copy(expediente)
        self._movimientos.append(_copy(movimiento))
        return _copy(expediente)

    async def next_numero_sequence(self, year: int) -> int:
        self._numero_sequences[year] = self._numero_sequences.get(year, 0) + 1
        return self._numero_sequences[year]

    async def get_expediente(self, expediente_id: str) -> Optional[Expediente]:
        return _copy(self._expedientes.get(expediente_id))

    async def list_expedientes(
        self,
        oficina_id: Optional[str] = None,
        estado: Optional[EstadoExpediente] = None
    ) -> List[Expediente]:
        result = []
        for expediente in self._expedientes.values():
            if oficina_id and expediente.oficina_actual_id != oficina_id:
                continue
            if estado and expediente.estado != estado:
                continue
            result.append(_copy(expediente))
        return sorted(result, key=lambda e: e.created_at)

    async def get_document(self, document_id: str) -> Optional[ExpedienteDocument]:
        return _copy(self._documents.get(document_id))

    async def list_documents(self, expediente_id: str) -> List[ExpedienteDocument]:
        documents = [d for d in self._documents.values() if d.expediente_id == expediente_id]
        return [_copy(d) for d in sorted(documents, key=lambda d: d.numero_foja)]

    async def list_movimientos(self, expediente_id: str) -> List[WorkflowMovimiento]:
        return [_copy(m) for m in self._movimientos if m.expediente_id == expediente_id]

    async def run_in_expediente_transaction(
        self,
        expediente_id: str,
        callback: Callable[[ExpedienteTransaction], Awaitable[T]]
    ) -> T:
        async with self._expediente_locks.hold(expediente_id):
            transaction = _MemoryExpedienteTransaction(self, expediente_id)
            result = await callback(transaction)
            transaction.commit()
            return result
