"""
Expediente and oficina schemas for API requests/responses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, validator

from ..models import (
    DocumentClass,
    EstadoFirma,
    ExpedienteDocument,
    Prioridad,
    TipoDocumento,
    TipoExpediente
)


class OficinaCreateRequest(BaseModel):
    codigo: str = Field(..., min_length=1, max_length=10)
    nombre: str = Field(..., min_length=1)
    descripcion: Optional[str] = None
    responsable: Optional[str] = None
    email: Optional[str] = None
    telefono: Optional[str] = None
    recepcion_automatica: bool = False


class ExpedienteCreateRequest(BaseModel):
    titulo: str = Field(..., min_length=1, max_length=200)
    oficina_id: str
    descripcion: Optional[str] = None
    tipo_expediente: TipoExpediente = TipoExpediente.ADMINISTRATIVO
    prioridad: Prioridad = Prioridad.NORMAL
    numero_expediente: Optional[str] = None

    @validator('titulo')
    def strip_titulo(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("titulo must not be blank")
        return v


class EnviarRequest(BaseModel):
    """Request schema for sending an expediente to another oficina"""
    oficina_destino_id: str
    motivo: Optional[str] = None
    observaciones: Optional[str] = None


class TransitionRequest(BaseModel):
    """Optional reason/notes for in-place transitions"""
    motivo: Optional[str] = None
    observaciones: Optional[str] = None


class RecibirRequest(BaseModel):
    oficina_id: Optional[str] = None
    observaciones: Optional[str] = None


class DocumentResponse(BaseModel):
    document_id: str
    expediente_id: str
    numero_foja: int
    orden_secuencial: int
    documento_nombre: str
    tipo_documento: TipoDocumento
    document_class: DocumentClass
    content_hash: str
    tamano_bytes: int
    estado_firma: EstadoFirma
    usuario_firmante: Optional[str] = None
    signature_id: Optional[str] = None
    fecha_firma: Optional[datetime] = None
    motivo_rechazo: Optional[str] = None
    archivo_firmado_key: Optional[str] = None
    oficina_agregado_id: Optional[str] = None
    usuario_agregado: str
    observaciones: Optional[str] = None
    fecha_agregado: datetime

    @classmethod
    def from_model(cls, document: ExpedienteDocument) -> "DocumentResponse":
        data = document.model_dump(exclude={"archivo_key"})
        data["orden_secuencial"] = document.orden_secuencial
        data["document_class"] = document.document_class
        return cls.model_validate(data)
