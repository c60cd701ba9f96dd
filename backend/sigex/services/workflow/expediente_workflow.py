"""
Expediente Workflow Engine

Routes expedientes between oficinas and drives their state machine. Every
state change is committed together with its WorkflowMovimiento inside a
per-expediente store transaction.
"""
import logging
from datetime import datetime
from typing import List, Optional, Union

from ...core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PendingSignatureError,
    ValidationError
)
from ...core.logging_config import set_expediente_context
from ...models import (
    EstadoExpediente,
    EstadoFirma,
    Expediente,
    ExpedienteDocument,
    Oficina,
    Prioridad,
    TipoDocumento,
    TipoExpediente,
    WorkflowMovimiento
)
from ...store.base import DurableStore
from ..signature.hashing import document_hash
from ..storage import BlobStorage
from .transitions import EventoWorkflow, allowed_targets, resolve_transition

logger = logging.getLogger(__name__)


class ExpedienteWorkflowEngine:
    """Service for expediente routing and state transitions"""

    def __init__(
        self,
        store: DurableStore,
        blob_storage: BlobStorage,
        rejected_is_terminal: bool = True,
        max_document_size_mb: int = 50
    ):
        self.store = store
        self.blob_storage = blob_storage
        self.rejected_is_terminal = rejected_is_terminal
        self.max_document_size = max_document_size_mb * 1024 * 1024

    # Oficinas

    async def crear_oficina(
        self,
        codigo: str,
        nombre: str,
        descripcion: Optional[str] = None,
        responsable: Optional[str] = None,
        email: Optional[str] = None,
        telefono: Optional[str] = None,
        recepcion_automatica: bool = False
    ) -> Oficina:
        codigo = codigo.strip().upper()
        if any(o.codigo == codigo for o in await self.store.list_oficinas()):
            raise ValidationError(f"Oficina code {codigo} already exists", {"codigo": codigo})

        oficina = Oficina(
            codigo=codigo,
            nombre=nombre,
            descripcion=descripcion,
            responsable=responsable,
            email=email,
            telefono=telefono,
            recepcion_automatica=recepcion_automatica
        )
        await self.store.insert_oficina(oficina)
        logger.info(f"Oficina {codigo} created ({oficina.oficina_id})")
        return oficina

    async def get_oficina(self, oficina_id: str) -> Oficina:
        oficina = await self.store.get_oficina(oficina_id)
        if oficina is None:
            raise NotFoundError("Oficina", oficina_id)
        return oficina

    async def list_oficinas(self, activa: Optional[bool] = None) -> List[Oficina]:
        return await self.store.list_oficinas(activa)

    async def _active_oficina(self, oficina_id: str) -> Oficina:
        oficina = await self.get_oficina(oficina_id)
        if not oficina.activa:
            raise ValidationError(f"Oficina {oficina.codigo} is not active", {"oficina_id": oficina_id})
        return oficina

    # Expedientes

    async def _next_numero(self) -> str:
        year = datetime.utcnow().year
        return f"{year}-{await self.store.next_numero_sequence(year):06d}"

    async def crear_expediente(
        self,
        titulo: str,
        oficina_id: str,
        usuario: str,
        descripcion: Optional[str] = None,
        tipo_expediente: TipoExpediente = TipoExpediente.ADMINISTRATIVO,
        prioridad: Prioridad = Prioridad.NORMAL,
        numero_expediente: Optional[str] = None
    ) -> Expediente:
        oficina = await self._active_oficina(oficina_id)
        set_expediente_context(user_id=usuario, oficina_id=oficina_id)

        if numero_expediente:
            if any(e.numero_expediente == numero_expediente for e in await self.store.list_expedientes()):
                raise ValidationError(
                    f"Expediente number {numero_expediente} already exists",
                    {"numero_expediente": numero_expediente}
                )
        else:
            numero_expediente = await self._next_numero()

        expediente = Expediente(
            numero_expediente=numero_expediente,
            titulo=titulo,
            descripcion=descripcion,
            tipo_expediente=tipo_expediente,
            prioridad=prioridad,
            oficina_actual_id=oficina.oficina_id,
            usuario_responsable=usuario
        )
        movimiento = WorkflowMovimiento(
            expediente_id=expediente.expediente_id,
            oficina_origen_id=None,
            oficina_destino_id=oficina.oficina_id,
            estado_anterior=None,
            estado_nuevo=EstadoExpediente.INICIADO,
            evento=EventoWorkflow.CREAR.value,
            motivo="Creacion de expediente",
            usuario_movimiento=usuario
        )
        await self.store.create_expediente(expediente, movimiento)

        logger.info(
            f"Expediente {numero_expediente} created in oficina {oficina.codigo}",
            extra={"expediente_id": expediente.expediente_id}
        )
        return expediente

    async def get_expediente(self, expediente_id: str) -> Expediente:
        expediente = await self.store.get_expediente(expediente_id)
        if expediente is None:
            raise NotFoundError("Expediente", expediente_id)
        return expediente

    async def list_expedientes(
        self,
        oficina_id: Optional[str] = None,
        estado: Optional[EstadoExpediente] = None
    ) -> List[Expediente]:
        return await self.store.list_expedientes(oficina_id, estado)

    # Documents

    async def add_document(
        self,
        expediente_id: str,
        documento_nombre: str,
        content: bytes,
        tipo_documento: Union[TipoDocumento, str],
        usuario: str,
        observaciones: Optional[str] = None
    ) -> ExpedienteDocument:
        """
        Attach a document at the next foja.

        The blob is written first; if the transaction fails it is deleted
        again. The first document moves the expediente from iniciado to
        en_tramite.
        """
        try:
            tipo = TipoDocumento(tipo_documento)
        except ValueError:
            raise ValidationError(f"Unknown document type: {tipo_documento}", {"tipo_documento": str(tipo_documento)})
        if not documento_nombre:
            raise ValidationError("Document name is required")
        content_hash = document_hash(content)
        if not content:
            raise ValidationError("Document content is empty")
        if len(content) > self.max_document_size:
            raise ValidationError(
                f"Document exceeds the {self.max_document_size // (1024 * 1024)}MB limit",
                {"size": len(content)}
            )

        expediente = await self.get_expediente(expediente_id)
        allowed_targets(expediente.estado, EventoWorkflow.AGREGAR_DOCUMENTO, self.rejected_is_terminal)
        set_expediente_context(user_id=usuario, expediente_id=expediente_id)

        archivo_key = await self.blob_storage.put(
            BlobStorage.document_key(expediente_id, documento_nombre),
            content
        )

        async def apply(tx):
            current = await tx.get_expediente()
            nuevo_estado = resolve_transition(
                current.estado,
                EventoWorkflow.AGREGAR_DOCUMENTO,
                rejected_is_terminal=self.rejected_is_terminal
            )
            foja = await tx.next_foja()
            document = ExpedienteDocument(
                expediente_id=expediente_id,
                numero_foja=foja,
                documento_nombre=documento_nombre,
                tipo_documento=tipo,
                content_hash=content_hash,
                archivo_key=archivo_key,
                tamano_bytes=len(content),
                oficina_agregado_id=current.oficina_actual_id,
                usuario_agregado=usuario,
                observaciones=observaciones
            )
            await tx.insert_document(document)
            await tx.update_expediente(current.version, estado=nuevo_estado)
            if nuevo_estado != current.estado:
                await tx.insert_movimiento(WorkflowMovimiento(
                    expediente_id=expediente_id,
                    oficina_origen_id=current.oficina_actual_id,
                    oficina_destino_id=current.oficina_actual_id,
                    estado_anterior=current.estado,
                    estado_nuevo=nuevo_estado,
                    evento=EventoWorkflow.AGREGAR_DOCUMENTO.value,
                    usuario_movimiento=usuario,
                    documentos_agregados=[document.document_id]
                ))
            return document

        try:
            document = await self.store.run_in_expediente_transaction(expediente_id, apply)
        except Exception:
            await self.blob_storage.delete(archivo_key)
            raise

        logger.info(
            f"Document {documento_nombre} added to expediente {expediente.numero_expediente} at foja {document.numero_foja}",
            extra={"documento_id": document.document_id}
        )
        return document

    async def eliminar_documento(self, expediente_id: str, document_id: str, usuario: str) -> ExpedienteDocument:
        """
        Remove a pendiente or rechazado document from the expediente.

        Signed documents stay. ultima_foja is not rolled back, so later
        documents never reuse the removed foja. The blob is deleted once
        the removal commits.
        """
        expediente = await self.get_expediente(expediente_id)
        allowed_targets(expediente.estado, EventoWorkflow.ELIMINAR_DOCUMENTO, self.rejected_is_terminal)
        set_expediente_context(user_id=usuario, expediente_id=expediente_id)

        document = await self.store.get_document(document_id)
        if document is None or document.expediente_id != expediente_id:
            raise NotFoundError("ExpedienteDocument", document_id)
        if document.estado_firma == EstadoFirma.FIRMADO:
            raise InvalidTransitionError(
                document.estado_firma.value,
                EventoWorkflow.ELIMINAR_DOCUMENTO.value,
                f"Document {document_id} is signed and cannot be removed"
            )

        async def apply(tx):
            current = await tx.get_expediente()
            estado = resolve_transition(
                current.estado,
                EventoWorkflow.ELIMINAR_DOCUMENTO,
                rejected_is_terminal=self.rejected_is_terminal
            )
            removed = await tx.delete_document(document_id, document.estado_firma)
            await tx.update_expediente(current.version)
            await tx.insert_movimiento(WorkflowMovimiento(
                expediente_id=expediente_id,
                oficina_origen_id=current.oficina_actual_id,
                oficina_destino_id=current.oficina_actual_id,
                estado_anterior=current.estado,
                estado_nuevo=estado,
                evento=EventoWorkflow.ELIMINAR_DOCUMENTO.value,
                motivo=f"Documento {removed.documento_nombre} (foja {removed.numero_foja}) eliminado",
                usuario_movimiento=usuario
            ))
            return removed

        removed = await self.store.run_in_expediente_transaction(expediente_id, apply)
        await self.blob_storage.delete(removed.archivo_key)

        logger.info(
            f"Document {removed.documento_nombre} (foja {removed.numero_foja}) removed from expediente "
            f"{expediente.numero_expediente} by {usuario}",
            extra={"documento_id": document_id}
        )
        return removed

    async def documentos(self, expediente_id: str) -> List[ExpedienteDocument]:
        await self.get_expediente(expediente_id)
        return await self.store.list_documents(expediente_id)

    async def pending_documents(self, expediente_id: str) -> List[ExpedienteDocument]:
        return [d for d in await self.documentos(expediente_id) if d.estado_firma == EstadoFirma.PENDIENTE]

    async def historial(self, expediente_id: str) -> List[WorkflowMovimiento]:
        await self.get_expediente(expediente_id)
        return await self.store.list_movimientos(expediente_id)

    # Routing

    async def enviar(
        self,
        expediente_id: str,
        oficina_destino_id: str,
        usuario: str,
        motivo: Optional[str] = None,
        observaciones: Optional[str] = None
    ) -> Expediente:
        """
        Send the expediente to another oficina.

        Blocked with PendingSignatureError while any document is pending
        signature. Oficinas with recepcion_automatica receive it en_tramite;
        otherwise it arrives derivado and must be received.
        """
        expediente = await self.get_expediente(expediente_id)
        destino = await self._active_oficina(oficina_destino_id)
        set_expediente_context(user_id=usuario, expediente_id=expediente_id, oficina_id=expediente.oficina_actual_id)

        if destino.oficina_id == expediente.oficina_actual_id:
            raise ValidationError(
                "Expediente is already in the destination oficina",
                {"oficina_id": destino.oficina_id}
            )

        target = EstadoExpediente.EN_TRAMITE if destino.recepcion_automatica else EstadoExpediente.DERIVADO
        resolve_transition(expediente.estado, EventoWorkflow.ENVIAR, target, self.rejected_is_terminal)

        pending = [d.document_id for d in await self.store.list_documents(expediente_id)
                   if d.estado_firma == EstadoFirma.PENDIENTE]
        if pending:
            logger.warning(f"Expediente {expediente.numero_expediente} has {len(pending)} unsigned documents; send refused")
            raise PendingSignatureError(expediente_id, pending)

        async def apply(tx):
            still_pending = [d.document_id for d in await tx.list_documents()
                             if d.estado_firma == EstadoFirma.PENDIENTE]
            if still_pending:
                raise PendingSignatureError(expediente_id, still_pending)

            updated = await tx.update_expediente(
                expediente.version,
                estado=target,
                oficina_actual_id=destino.oficina_id,
                oficina_origen_id=expediente.oficina_actual_id
            )
            await tx.insert_movimiento(WorkflowMovimiento(
                expediente_id=expediente_id,
                oficina_origen_id=expediente.oficina_actual_id,
                oficina_destino_id=destino.oficina_id,
                estado_anterior=expediente.estado,
                estado_nuevo=target,
                evento=EventoWorkflow.ENVIAR.value,
                motivo=motivo,
                observaciones=observaciones,
                usuario_movimiento=usuario
            ))
            return updated

        updated = await self.store.run_in_expediente_transaction(expediente_id, apply)
        logger.info(
            f"Expediente {expediente.numero_expediente} sent to {destino.codigo} ({target.value})",
            extra={"expediente_id": expediente_id, "oficina_destino": destino.oficina_id}
        )
        return updated

    async def _transition(
        self,
        expediente_id: str,
        evento: EventoWorkflow,
        usuario: str,
        motivo: Optional[str] = None,
        observaciones: Optional[str] = None
    ) -> Expediente:
        """In-place transition: the expediente stays in its current oficina"""
        expediente = await self.get_expediente(expediente_id)
        set_expediente_context(user_id=usuario, expediente_id=expediente_id, oficina_id=expediente.oficina_actual_id)
        target = resolve_transition(expediente.estado, evento, rejected_is_terminal=self.rejected_is_terminal)

        async def apply(tx):
            updated = await tx.update_expediente(expediente.version, estado=target)
            await tx.insert_movimiento(WorkflowMovimiento(
                expediente_id=expediente_id,
                oficina_origen_id=expediente.oficina_actual_id,
                oficina_destino_id=expediente.oficina_actual_id,
                estado_anterior=expediente.estado,
                estado_nuevo=target,
                evento=evento.value,
                motivo=motivo,
                observaciones=observaciones,
                usuario_movimiento=usuario
            ))
            return updated

        updated = await self.store.run_in_expediente_transaction(expediente_id, apply)
        logger.info(
            f"Expediente {expediente.numero_expediente}: {expediente.estado.value} -> {target.value} ({evento.value})"
        )
        return updated

    async def recibir(self, expediente_id: str, usuario: str, oficina_id: Optional[str] = None,
                      observaciones: Optional[str] = None) -> Expediente:
        """Receive a derivado expediente in its current (destination) oficina"""
        if oficina_id is not None:
            expediente = await self.get_expediente(expediente_id)
            if expediente.oficina_actual_id != oficina_id:
                raise ValidationError(
                    "Only the destination oficina can receive the expediente",
                    {"oficina_id": oficina_id, "oficina_actual_id": expediente.oficina_actual_id}
                )
        return await self._transition(expediente_id, EventoWorkflow.RECIBIR, usuario, observaciones=observaciones)

    async def solicitar_revision(self, expediente_id: str, usuario: str, motivo: Optional[str] = None) -> Expediente:
        return await self._transition(expediente_id, EventoWorkflow.SOLICITAR_REVISION, usuario, motivo=motivo)

    async def observar(self, expediente_id: str, usuario: str, observaciones: str) -> Expediente:
        if not observaciones:
            raise ValidationError("Observaciones are required")
        return await self._transition(expediente_id, EventoWorkflow.OBSERVAR, usuario, observaciones=observaciones)

    async def subsanar(self, expediente_id: str, usuario: str, observaciones: Optional[str] = None) -> Expediente:
        return await self._transition(expediente_id, EventoWorkflow.SUBSANAR, usuario, observaciones=observaciones)

    async def aprobar(self, expediente_id: str, usuario: str, observaciones: Optional[str] = None) -> Expediente:
        return await self._transition(expediente_id, EventoWorkflow.APROBAR, usuario, observaciones=observaciones)

    async def rechazar(self, expediente_id: str, usuario: str, motivo: str) -> Expediente:
        if not motivo:
            raise ValidationError("A rejection reason is required")
        return await self._transition(expediente_id, EventoWorkflow.RECHAZAR, usuario, motivo=motivo)

    async def archivar(self, expediente_id: str, usuario: str, motivo: Optional[str] = None) -> Expediente:
        return await self._transition(expediente_id, EventoWorkflow.ARCHIVAR, usuario, motivo=motivo)
