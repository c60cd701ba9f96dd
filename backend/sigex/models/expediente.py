from typing import List, Optional
from datetime import datetime
from enum import Enum
import uuid

from pydantic import BaseModel, Field

from .certificate import ValidityLevel


class EstadoExpediente(str, Enum):
    """Workflow state of an expediente"""
    INICIADO = "iniciado"
    EN_TRAMITE = "en_tramite"
    PENDIENTE_REVISION = "pendiente_revision"
    CON_OBSERVACIONES = "con_observaciones"
    APROBADO = "aprobado"
    RECHAZADO = "rechazado"
    ARCHIVADO = "archivado"
    DERIVADO = "derivado"               # Sent, waiting for the destination office to receive it


class Prioridad(str, Enum):
    BAJA = "baja"
    NORMAL = "normal"
    ALTA = "alta"
    URGENTE = "urgente"


class TipoExpediente(str, Enum):
    LICITACION = "licitacion"
    CONTRATACION = "contratacion"
    ADMINISTRATIVO = "administrativo"
    JURIDICO = "juridico"
    TECNICO = "tecnico"
    OTRO = "otro"


class DocumentClass(str, Enum):
    """Legal class of a document; decides the certificate tier required to sign it"""
    OFICIAL = "oficial"
    NO_OFICIAL = "no_oficial"

    @property
    def required_validity_level(self) -> Optional[ValidityLevel]:
        if self == DocumentClass.OFICIAL:
            return ValidityLevel.GOVERNMENT
        return None


class TipoDocumento(str, Enum):
    """Document classification inside an expediente"""
    OFICIAL = "oficial"
    NO_OFICIAL = "no_oficial"
    INICIACION = "iniciacion"
    INFORME = "informe"
    DICTAMEN = "dictamen"
    RESOLUCION = "resolucion"
    ANEXO = "anexo"
    NOTIFICACION = "notificacion"
    OTRO = "otro"

    @property
    def document_class(self) -> DocumentClass:
        if self in _OFFICIAL_TYPES:
            return DocumentClass.OFICIAL
        return DocumentClass.NO_OFICIAL


_OFFICIAL_TYPES = frozenset({TipoDocumento.OFICIAL, TipoDocumento.DICTAMEN, TipoDocumento.RESOLUCION})


class EstadoFirma(str, Enum):
    PENDIENTE = "pendiente"
    FIRMADO = "firmado"
    RECHAZADO = "rechazado"


class Oficina(BaseModel):
    """Administrative office that can hold or receive expedientes"""
    oficina_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    codigo: str = Field(..., max_length=10)
    nombre: str
    descripcion: Optional[str] = None
    responsable: Optional[str] = None
    email: Optional[str] = None
    telefono: Optional[str] = None
    activa: bool = True
    recepcion_automatica: bool = Field(
        default=False,
        description="Expedientes sent here arrive en_tramite instead of derivado"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Expediente(BaseModel):
    """Government case file"""
    expediente_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    numero_expediente: str
    titulo: str = Field(..., max_length=200)
    descripcion: Optional[str] = None
    tipo_expediente: TipoExpediente = TipoExpediente.ADMINISTRATIVO
    estado: EstadoExpediente = EstadoExpediente.INICIADO
    prioridad: Prioridad = Prioridad.NORMAL
    oficina_actual_id: str
    oficina_origen_id: Optional[str] = None
    usuario_responsable: str

    ultima_foja: int = Field(default=0, description="Highest foja assigned so far")
    version: int = Field(default=0, description="Optimistic concurrency token")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ExpedienteDocument(BaseModel):
    """Document attached to an expediente at a given foja"""
    document_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    expediente_id: str
    numero_foja: int = Field(..., ge=1, description="Canonical sequence number")
    documento_nombre: str
    tipo_documento: TipoDocumento
    content_hash: str = Field(..., description="Hex SHA-256 of the original bytes")
    archivo_key: str = Field(..., description="Blob storage key of the original")
    archivo_firmado_key: Optional[str] = None
    tamano_bytes: int = 0

    estado_firma: EstadoFirma = EstadoFirma.PENDIENTE
    usuario_firmante: Optional[str] = None
    signature_id: Optional[str] = None
    fecha_firma: Optional[datetime] = None
    motivo_rechazo: Optional[str] = None

    oficina_agregado_id: Optional[str] = None
    usuario_agregado: str
    observaciones: Optional[str] = None
    fecha_agregado: datetime = Field(default_factory=datetime.utcnow)

    @property
    def orden_secuencial(self) -> int:
        """Display alias of numero_foja"""
        return self.numero_foja

    @property
    def document_class(self) -> DocumentClass:
        return self.tipo_documento.document_class


class WorkflowMovimiento(BaseModel):
    """Append-only audit entry for an expediente movement or state change"""
    movimiento_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    expediente_id: str
    oficina_origen_id: Optional[str] = None
    oficina_destino_id: str
    estado_anterior: Optional[EstadoExpediente] = None
    estado_nuevo: EstadoExpediente
    evento: str
    motivo: Optional[str] = None
    observaciones: Optional[str] = None
    usuario_movimiento: str
    fecha_movimiento: datetime = Field(default_factory=datetime.utcnow)
    documentos_agregados: List[str] = Field(default_factory=list)
