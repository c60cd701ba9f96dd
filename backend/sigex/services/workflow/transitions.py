"""
Expediente transition table.

Maps (state, event) to the set of states the event may lead to. Anything
not listed is rejected with InvalidTransitionError.
"""
from enum import Enum
from typing import Dict, FrozenSet, Tuple

from ...core.exceptions import InvalidTransitionError
from ...models import EstadoExpediente


class EventoWorkflow(str, Enum):
    CREAR = "crear"
    AGREGAR_DOCUMENTO = "agregar_documento"
    ELIMINAR_DOCUMENTO = "eliminar_documento"
    ENVIAR = "enviar"
    RECIBIR = "recibir"
    SOLICITAR_REVISION = "solicitar_revision"
    OBSERVAR = "observar"
    SUBSANAR = "subsanar"
    APROBAR = "aprobar"
    RECHAZAR = "rechazar"
    ARCHIVAR = "archivar"


E = EstadoExpediente
V = EventoWorkflow

TRANSITIONS: Dict[Tuple[EstadoExpediente, EventoWorkflow], FrozenSet[EstadoExpediente]] = {
    (E.INICIADO, V.AGREGAR_DOCUMENTO): frozenset({E.EN_TRAMITE}),
    (E.EN_TRAMITE, V.AGREGAR_DOCUMENTO): frozenset({E.EN_TRAMITE}),
    (E.CON_OBSERVACIONES, V.AGREGAR_DOCUMENTO): frozenset({E.CON_OBSERVACIONES}),
    (E.EN_TRAMITE, V.ELIMINAR_DOCUMENTO): frozenset({E.EN_TRAMITE}),
    (E.CON_OBSERVACIONES, V.ELIMINAR_DOCUMENTO): frozenset({E.CON_OBSERVACIONES}),

    (E.EN_TRAMITE, V.ENVIAR): frozenset({E.DERIVADO, E.EN_TRAMITE}),
    (E.CON_OBSERVACIONES, V.ENVIAR): frozenset({E.DERIVADO, E.EN_TRAMITE}),
    (E.APROBADO, V.ENVIAR): frozenset({E.DERIVADO, E.EN_TRAMITE}),
    (E.DERIVADO, V.RECIBIR): frozenset({E.EN_TRAMITE}),

    (E.EN_TRAMITE, V.SOLICITAR_REVISION): frozenset({E.PENDIENTE_REVISION}),
    (E.PENDIENTE_REVISION, V.OBSERVAR): frozenset({E.CON_OBSERVACIONES}),
    (E.CON_OBSERVACIONES, V.SUBSANAR): frozenset({E.EN_TRAMITE}),
    (E.PENDIENTE_REVISION, V.APROBAR): frozenset({E.APROBADO}),
    (E.PENDIENTE_REVISION, V.RECHAZAR): frozenset({E.RECHAZADO}),
    (E.CON_OBSERVACIONES, V.RECHAZAR): frozenset({E.RECHAZADO}),

    (E.APROBADO, V.ARCHIVAR): frozenset({E.ARCHIVADO}),
    (E.RECHAZADO, V.ARCHIVAR): frozenset({E.ARCHIVADO}),
}

del E, V


def allowed_targets(
    estado: EstadoExpediente,
    evento: EventoWorkflow,
    rejected_is_terminal: bool = True
) -> FrozenSet[EstadoExpediente]:
    """Targets reachable from ``estado`` by ``evento``; raises InvalidTransitionError"""
    if estado == EstadoExpediente.RECHAZADO and rejected_is_terminal:
        raise InvalidTransitionError(
            estado.value,
            evento.value,
            f"Expediente is rechazado (terminal); event '{evento.value}' is not allowed"
        )
    targets = TRANSITIONS.get((estado, evento))
    if not targets:
        raise InvalidTransitionError(estado.value, evento.value)
    return targets


def resolve_transition(
    estado: EstadoExpediente,
    evento: EventoWorkflow,
    target: EstadoExpediente = None,
    rejected_is_terminal: bool = True
) -> EstadoExpediente:
    """Pick the target state; ``target`` is required when the event has several"""
    targets = allowed_targets(estado, evento, rejected_is_terminal)
    if target is None:
        if len(targets) != 1:
            raise InvalidTransitionError(
                estado.value,
                evento.value,
                f"Event '{evento.value}' from '{estado.value}' needs an explicit target"
            )
        return next(iter(targets))
    if target not in targets:
        raise InvalidTransitionError(
            estado.value,
            evento.value,
            f"Event '{evento.value}' cannot move '{estado.value}' to '{target.value}'"
        )
    return target


def is_terminal(estado: EstadoExpediente, rejected_is_terminal: bool = True) -> bool:
    if estado == EstadoExpediente.ARCHIVADO:
        return True
    return estado == EstadoExpediente.RECHAZADO and rejected_is_terminal
