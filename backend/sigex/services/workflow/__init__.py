from .transitions import EventoWorkflow, TRANSITIONS, allowed_targets, resolve_transition, is_terminal
from .expediente_workflow import ExpedienteWorkflowEngine

__all__ = [
    'EventoWorkflow',
    'TRANSITIONS',
    'allowed_targets',
    'resolve_transition',
    'is_terminal',
    'ExpedienteWorkflowEngine'
]
