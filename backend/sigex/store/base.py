"""
Durable store contract.

Every write that must be atomic with respect to one expediente (foja
assignment, state change plus movimiento, document status updates and the
signature records they point at) goes through ``run_in_expediente_transaction``.
Everything else is a plain single-record operation.
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

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

T = TypeVar("T")


class ExpedienteTransaction(ABC):
    """Unit of work scoped to a single expediente; nothing is visible until it commits"""

    @abstractmethod
    async def get_expediente(self) -> Expediente:
        """Current expediente as seen by this transaction (NotFoundError if missing)"""

    @abstractmethod
    async def next_foja(self) -> int:
        """Atomically increment and return the expediente foja counter"""

    @abstractmethod
    async def list_documents(self) -> List[ExpedienteDocument]:
        """Documents of the expediente in foja order"""

    @abstractmethod
    async def insert_document(self, document: ExpedienteDocument) -> ExpedienteDocument:
        pass

    @abstractmethod
    async def update_document(self, document_id: str, expected_estado_firma: EstadoFirma, **changes: Any) -> ExpedienteDocument:
        """Conditional update; ConcurrentModificationError if estado_firma moved"""

    @abstractmethod
    async def delete_document(self, document_id: str, expected_estado_firma: EstadoFirma) -> ExpedienteDocument:
        """Conditional delete; returns the removed document. Fojas are never reused"""

    @abstractmethod
    async def update_expediente(self, expected_version: int, **changes: Any) -> Expediente:
        """Conditional update that bumps ``version``; ConcurrentModificationError on mismatch"""

    @abstractmethod
    async def insert_movimiento(self, movimiento: WorkflowMovimiento) -> WorkflowMovimiento:
        pass

    @abstractmethod
    async def insert_signature(self, record: SignatureRecord) -> SignatureRecord:
        """Signature record committed together with the document updates"""


class DurableStore(ABC):
    """Persistence used by the lifecycle, signing and workflow services"""

    # Certificates

    @abstractmethod
    async def insert_certificate(self, certificate: Certificate) -> Certificate:
        pass

    @abstractmethod
    async def get_certificate(self, certificate_id: str) -> Optional[Certificate]:
        pass

    @abstractmethod
    async def find_certificate_by_serial(self, serial_number: str) -> Optional[Certificate]:
        pass

    @abstractmethod
    async def list_certificates(self, owner_id: Optional[str] = None) -> List[Certificate]:
        pass

    @abstractmethod
    async def update_certificate(self, certificate_id: str, **changes: Any) -> Certificate:
        pass

    # Certificate requests

    @abstractmethod
    async def insert_certificate_request(self, request: CertificateRequest) -> CertificateRequest:
        pass

    @abstractmethod
    async def get_certificate_request(self, request_id: str) -> Optional[CertificateRequest]:
        pass

    @abstractmethod
    async def update_certificate_request(self, request_id: str, **changes: Any) -> CertificateRequest:
        pass

    # Signature records are append-only

    @abstractmethod
    async def insert_signature(self, record: SignatureRecord) -> SignatureRecord:
        pass

    @abstractmethod
    async def get_signature(self, signature_id: str) -> Optional[SignatureRecord]:
        pass

    @abstractmethod
    async def list_signatures_for_document(self, document_id: str) -> List[SignatureRecord]:
        pass

    # Oficinas

    @abstractmethod
    async def insert_oficina(self, oficina: Oficina) -> Oficina:
        pass

    @abstractmethod
    async def get_oficina(self, oficina_id: str) -> Optional[Oficina]:
        pass

    @abstractmethod
    async def list_oficinas(self, activa: Optional[bool] = None) -> List[Oficina]:
        pass

    # Expedientes

    @abstractmethod
    async def create_expediente(self, expediente: Expediente, movimiento: WorkflowMovimiento) -> Expediente:
        """
        Insert a new expediente together with its creation movimiento.

        A numero_expediente that is already taken raises ConcurrentModificationError.
        """

    @abstractmethod
    async def next_numero_sequence(self, year: int) -> int:
        """Atomically increment and return the expediente number sequence for ``year``"""

    @abstractmethod
    async def get_expediente(self, expediente_id: str) -> Optional[Expediente]:
        pass

    @abstractmethod
    async def list_expedientes(
        self,
        oficina_id: Optional[str] = None,
        estado: Optional[EstadoExpediente] = None
    ) -> List[Expediente]:
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[ExpedienteDocument]:
        pass

    @abstractmethod
    async def list_documents(self, expediente_id: str) -> List[ExpedienteDocument]:
        pass

    @abstractmethod
    async def list_movimientos(self, expediente_id: str) -> List[WorkflowMovimiento]:
        """Movimientos in chronological order"""

    @abstractmethod
    async def run_in_expediente_transaction(
        self,
        expediente_id: str,
        callback: Callable[[ExpedienteTransaction], Awaitable[T]]
    ) -> T:
        """
        Run ``callback`` inside a transaction scoped to ``expediente_id``.

        Transactions on the same expediente are serialised; different
        expedientes proceed in parallel. Writes are applied only if the
        callback returns; any exception discards them and propagates.
        """

    async def close(self):
        pass
