"""
Certificate authority providers and the registry that dispatches to them.
"""

from .base import CertificateAuthorityProvider, IdentityValidation, ProviderResult
from .catalog import CERTIFICATE_TYPES
from .external import CommercialCertificateAuthority, ExternalCertificateAuthority, GovernmentCertificateAuthority
from .internal import InternalCertificateAuthority
from .registry import CertificateAuthorityRegistry, build_default_registry

__all__ = [
    'CertificateAuthorityProvider',
    'IdentityValidation',
    'ProviderResult',
    'CERTIFICATE_TYPES',
    'ExternalCertificateAuthority',
    'GovernmentCertificateAuthority',
    'CommercialCertificateAuthority',
    'InternalCertificateAuthority',
    'CertificateAuthorityRegistry',
    'build_default_registry'
]
