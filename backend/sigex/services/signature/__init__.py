"""
Digital Signature Services for SIGEX

This package provides services for signing expediente documents with
stored certificates and verifying the resulting signature records.
"""

from .certificate_manager import CertificateManager
from .signature_verifier import SignatureVerifier, VerificationResult
from .signing_engine import SigningEngine

__all__ = [
    'CertificateManager',
    'SignatureVerifier',
    'VerificationResult',
    'SigningEngine'
]
