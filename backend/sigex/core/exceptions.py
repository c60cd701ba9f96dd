"""
Domain error hierarchy.

Services raise these; the API layer maps them to HTTP responses
(see sigex.api.exception_handlers).
"""
from typing import Any, Dict, List, Optional


class SigexError(Exception):
    """Base class for all domain errors"""

    code = "sigex_error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


# Validation

class ValidationError(SigexError):
    """Malformed input or unknown type. Never retried."""
    code = "validation_error"


class UnsupportedProviderError(ValidationError):
    code = "unsupported_provider"

    def __init__(self, provider: str):
        super().__init__(
            f"CA provider {provider} not supported",
            {"provider": provider},
        )
        self.provider = provider


class NotFoundError(SigexError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


# Business rules

class PolicyError(SigexError):
    """Business-rule rejection with a structured reason"""
    code = "policy_error"


class IncompatibleCertificateError(PolicyError):
    code = "incompatible_certificate"

    def __init__(self, certificate_serial: str, validity_level: str, required_level: str, document_class: str):
        super().__init__(
            f"Certificate {certificate_serial} ({validity_level}) cannot sign "
            f"'{document_class}' documents, which require a {required_level} certificate",
            {
                "certificate_serial": certificate_serial,
                "validity_level": validity_level,
                "required_level": required_level,
                "document_class": document_class,
            },
        )


class PendingSignatureError(PolicyError):
    code = "pending_signature"

    def __init__(self, expediente_id: str, document_ids: List[str]):
        count = len(document_ids)
        super().__init__(
            f"Expediente {expediente_id} contains {count} unsigned "
            f"document{'s' if count != 1 else ''}; all documents must be signed before sending",
            {"expediente_id": expediente_id, "document_ids": list(document_ids)},
        )
        self.document_ids = list(document_ids)


class InvalidTransitionError(PolicyError):
    code = "invalid_transition"

    def __init__(self, estado: str, evento: str, message: Optional[str] = None):
        super().__init__(
            message or f"Event '{evento}' is not allowed in state '{estado}'",
            {"estado": estado, "evento": evento},
        )
        self.estado = estado
        self.evento = evento


# Certificate lifecycle

class LifecycleError(SigexError):
    """Certificate expired, revoked or retired at point of use"""
    code = "certificate_lifecycle"

    def __init__(self, message: str, certificate_serial: Optional[str] = None,
                 status: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        data = dict(details or {})
        if certificate_serial:
            data["certificate_serial"] = certificate_serial
        if status:
            data["status"] = status
        super().__init__(message, data)
        self.certificate_serial = certificate_serial
        self.status = status


class CertificateOperationInProgressError(LifecycleError):
    code = "certificate_operation_in_progress"
    retryable = True


# External providers

class ProviderError(SigexError):
    code = "provider_error"


class ProviderUnavailableError(ProviderError):
    """Timeout or unreachable CA. Safe to retry, nothing was persisted."""
    code = "provider_unavailable"
    retryable = True


class ProviderRejectedError(ProviderError):
    code = "provider_rejected"


# Concurrency

class ConcurrencyError(SigexError):
    code = "concurrency_error"
    retryable = True


class ConcurrentModificationError(ConcurrencyError):
    code = "concurrent_modification"


# Verification

class IntegrityError(SigexError):
    """Document hash does not match the recorded hash"""
    code = "integrity_error"


class AuthenticityError(SigexError):
    """Signature does not verify against the recorded public key"""
    code = "authenticity_error"
