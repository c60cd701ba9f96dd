"""
Beanie documents backing MongoStore.

Each document reuses the fields of its domain model; the services only
ever see the plain domain models.
"""
from beanie import Document
from pymongo import IndexModel, ASCENDING, DESCENDING

from ..models import (
    Certificate,
    CertificateRequest,
    SignatureRecord,
    Oficina,
    Expediente,
    ExpedienteDocument,
    WorkflowMovimiento
)


class CertificateModel(Document, Certificate):
    class Settings:
        name = "certificates"
        indexes = [
            IndexModel([("certificate_id", ASCENDING)], unique=True),
            IndexModel([("serial_number", ASCENDING)], unique=True),
            [("owner_id", ASCENDING), ("status", ASCENDING)],
        ]


class CertificateRequestModel(Document, CertificateRequest):
    class Settings:
        name = "certificate_requests"
        indexes = [
            IndexModel([("request_id", ASCENDING)], unique=True),
            [("provider", ASCENDING), ("external_id", ASCENDING)],
            [("status", ASCENDING), ("created_at", DESCENDING)],
        ]


class SignatureRecordModel(Document, SignatureRecord):
    class Settings:
        name = "signature_records"
        indexes = [
            IndexModel([("signature_id", ASCENDING)], unique=True),
            "document_ids",
            "certificate_serial",
        ]


class OficinaModel(Document, Oficina):
    class Settings:
        name = "oficinas"
        indexes = [
            IndexModel([("oficina_id", ASCENDING)], unique=True),
            IndexModel([("codigo", ASCENDING)], unique=True),
        ]


class ExpedienteModel(Document, Expediente):
    class Settings:
        name = "expedientes"
        indexes = [
            IndexModel([("expediente_id", ASCENDING)], unique=True),
            IndexModel([("numero_expediente", ASCENDING)], unique=True),
            [("oficina_actual_id", ASCENDING), ("estado", ASCENDING)],
        ]


class ExpedienteCounterModel(Document):
    """Per-year sequence behind numero_expediente"""
    year: int
    seq: int = 0

    class Settings:
        name = "expediente_counters"
        indexes = [
            IndexModel([("year", ASCENDING)], unique=True),
        ]


class ExpedienteDocumentModel(Document, ExpedienteDocument):
    class Settings:
        name = "expediente_documentos"
        indexes = [
            IndexModel([("document_id", ASCENDING)], unique=True),
            IndexModel([("expediente_id", ASCENDING), ("numero_foja", ASCENDING)], unique=True),
        ]


class WorkflowMovimientoModel(Document, WorkflowMovimiento):
    class Settings:
        name = "workflow_movimientos"
        indexes = [
            IndexModel([("movimiento_id", ASCENDING)], unique=True),
            [("expediente_id", ASCENDING), ("fecha_movimiento", ASCENDING)],
        ]


DOCUMENT_MODELS = [
    CertificateModel,
    CertificateRequestModel,
    SignatureRecordModel,
    OficinaModel,
    ExpedienteModel,
    ExpedienteCounterModel,
    ExpedienteDocumentModel,
    WorkflowMovimientoModel,
]
