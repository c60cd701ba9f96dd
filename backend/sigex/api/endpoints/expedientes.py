"""
Expediente API endpoints

Creation, document attachment, routing between oficinas and the review
state machine.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ...models import EstadoExpediente, Expediente, TipoDocumento, WorkflowMovimiento
from ...schemas.expediente import (
    DocumentResponse,
    EnviarRequest,
    ExpedienteCreateRequest,
    RecibirRequest,
    TransitionRequest
)
from ...services.container import ServiceContainer
from ..deps import get_current_usuario, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=Expediente, status_code=201)
async def create_expediente(
    body: ExpedienteCreateRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.crear_expediente(
        titulo=body.titulo,
        oficina_id=body.oficina_id,
        usuario=usuario,
        descripcion=body.descripcion,
        tipo_expediente=body.tipo_expediente,
        prioridad=body.prioridad,
        numero_expediente=body.numero_expediente
    )


@router.get("", response_model=List[Expediente])
async def list_expedientes(
    oficina_id: Optional[str] = Query(None),
    estado: Optional[EstadoExpediente] = Query(None),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.list_expedientes(oficina_id, estado)


@router.get("/{expediente_id}", response_model=Expediente)
async def get_expediente(
    expediente_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.get_expediente(expediente_id)


@router.post("/{expediente_id}/documentos", response_model=DocumentResponse, status_code=201)
async def add_document(
    expediente_id: str,
    file: UploadFile = File(...),
    tipo_documento: TipoDocumento = Form(...),
    documento_nombre: Optional[str] = Form(None),
    observaciones: Optional[str] = Form(None),
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """Attach a document at the next foja"""
    content = await file.read()
    document = await services.workflow.add_document(
        expediente_id,
        documento_nombre or file.filename,
        content,
        tipo_documento,
        usuario,
        observaciones=observaciones
    )
    return DocumentResponse.from_model(document)


@router.get("/{expediente_id}/documentos", response_model=List[DocumentResponse])
async def list_documents(
    expediente_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return [DocumentResponse.from_model(d) for d in await services.workflow.documentos(expediente_id)]


@router.get("/{expediente_id}/documentos/pendientes", response_model=List[DocumentResponse])
async def list_pending_documents(
    expediente_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return [DocumentResponse.from_model(d) for d in await services.workflow.pending_documents(expediente_id)]


@router.delete("/{expediente_id}/documentos/{document_id}", response_model=DocumentResponse)
async def delete_document(
    expediente_id: str,
    document_id: str,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """Remove an unsigned document; its foja is not reused"""
    document = await services.workflow.eliminar_documento(expediente_id, document_id, usuario)
    return DocumentResponse.from_model(document)


@router.get("/{expediente_id}/historial", response_model=List[WorkflowMovimiento])
async def historial(
    expediente_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.historial(expediente_id)


@router.post("/{expediente_id}/enviar", response_model=Expediente)
async def enviar(
    expediente_id: str,
    body: EnviarRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """Send to another oficina; 409 while documents are pending signature"""
    return await services.workflow.enviar(
        expediente_id,
        body.oficina_destino_id,
        usuario,
        motivo=body.motivo,
        observaciones=body.observaciones
    )


@router.post("/{expediente_id}/recibir", response_model=Expediente)
async def recibir(
    expediente_id: str,
    body: RecibirRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.recibir(
        expediente_id,
        usuario,
        oficina_id=body.oficina_id,
        observaciones=body.observaciones
    )


@router.post("/{expediente_id}/solicitar-revision", response_model=Expediente)
async def solicitar_revision(
    expediente_id: str,
    body: TransitionRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.solicitar_revision(expediente_id, usuario, motivo=body.motivo)


@router.post("/{expediente_id}/observar", response_model=Expediente)
async def observar(
    expediente_id: str,
    body: TransitionRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.observar(expediente_id, usuario, body.observaciones)


@router.post("/{expediente_id}/subsanar", response_model=Expediente)
async def subsanar(
    expediente_id: str,
    body: TransitionRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.subsanar(expediente_id, usuario, observaciones=body.observaciones)


@router.post("/{expediente_id}/aprobar", response_model=Expediente)
async def aprobar(
    expediente_id: str,
    body: TransitionRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.aprobar(expediente_id, usuario, observaciones=body.observaciones)


@router.post("/{expediente_id}/rechazar", response_model=Expediente)
async def rechazar(
    expediente_id: str,
    body: TransitionRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.rechazar(expediente_id, usuario, body.motivo)


@router.post("/{expediente_id}/archivar", response_model=Expediente)
async def archivar(
    expediente_id: str,
    body: TransitionRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.archivar(expediente_id, usuario, motivo=body.motivo)
