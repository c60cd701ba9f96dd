"""
Certificate authority registry.

Dispatches certificate operations to the provider registered under a
provider id.
"""
import logging
from typing import Dict, List, Optional

from ...core.config import Settings
from ...core.exceptions import UnsupportedProviderError, ValidationError
from ...models import CertificateAuthority, CertificateType, SubjectIdentity
from .base import CertificateAuthorityProvider, IdentityValidation, ProviderResult
from .catalog import CERTIFICATE_TYPES
from .external import CommercialCertificateAuthority, GovernmentCertificateAuthority
from .internal import InternalCertificateAuthority

logger = logging.getLogger(__name__)


class CertificateAuthorityRegistry:
    """Providers keyed by provider id"""

    def __init__(self, certificate_types: Optional[Dict[str, CertificateType]] = None):
        self._providers: Dict[str, CertificateAuthorityProvider] = {}
        self._certificate_types = dict(certificate_types or CERTIFICATE_TYPES)

    def register(self, provider: CertificateAuthorityProvider):
        self._providers[provider.provider_id] = provider
        logger.info(f"Registered CA provider {provider.provider_id} ({provider.descriptor.name})")

    def get(self, provider_id: str) -> CertificateAuthorityProvider:
        provider = self._providers.get(provider_id)
        if provider is None or not provider.descriptor.is_active:
            raise UnsupportedProviderError(provider_id)
        return provider

    def authorities(self) -> List[CertificateAuthority]:
        return [p.descriptor for p in self._providers.values() if p.descriptor.is_active]

    def certificate_types(self) -> List[CertificateType]:
        return list(self._certificate_types.values())

    def certificate_type(self, name: str) -> CertificateType:
        certificate_type = self._certificate_types.get(name)
        if certificate_type is None:
            raise ValidationError(f"Unknown certificate type: {name}", {"certificate_type": name})
        return certificate_type

    def provider_for_type(self, provider_id: str, certificate_type: str) -> CertificateAuthorityProvider:
        provider = self.get(provider_id)
        cert_type = self.certificate_type(certificate_type)
        if not provider.issues(cert_type):
            raise ValidationError(
                f"Provider {provider_id} does not issue '{certificate_type}' certificates",
                {"provider": provider_id, "certificate_type": certificate_type}
            )
        return provider

    async def request_certificate(self, provider_id: str, subject: SubjectIdentity, certificate_type: str) -> ProviderResult:
        provider = self.provider_for_type(provider_id, certificate_type)
        return await provider.request_certificate(subject, self.certificate_type(certificate_type))

    async def validate_identity(self, provider_id: str, subject: SubjectIdentity) -> IdentityValidation:
        return await self.get(provider_id).validate_identity(subject)

    async def get_status(self, provider_id: str, external_id: str) -> ProviderResult:
        return await self.get(provider_id).get_status(external_id)

    async def revoke(self, provider_id: str, external_id: str, reason: Optional[str] = None) -> bool:
        return await self.get(provider_id).revoke(external_id, reason)

    async def aclose(self):
        for provider in self._providers.values():
            await provider.aclose()


def build_default_registry(settings: Settings, transport=None) -> CertificateAuthorityRegistry:
    """Internal CA always; government and commercial CAs when their URL is configured"""
    registry = CertificateAuthorityRegistry()
    registry.register(InternalCertificateAuthority(
        key_size=settings.INTERNAL_CA_KEY_SIZE,
        validity_days=settings.INTERNAL_CA_VALIDITY_DAYS,
        organization=settings.INTERNAL_CA_ORGANIZATION,
        organizational_unit=settings.INTERNAL_CA_ORGANIZATIONAL_UNIT
    ))

    external_options = dict(
        timeout=settings.CA_TIMEOUT_SECONDS,
        max_retries=settings.CA_MAX_RETRIES,
        retry_backoff=settings.CA_RETRY_BACKOFF_SECONDS,
        transport=transport
    )
    if settings.GOVERNMENT_CA_URL:
        registry.register(GovernmentCertificateAuthority(
            provider_id=settings.GOVERNMENT_CA_PROVIDER_ID,
            name=settings.GOVERNMENT_CA_NAME,
            api_endpoint=settings.GOVERNMENT_CA_URL,
            api_key=settings.GOVERNMENT_CA_API_KEY,
            **external_options
        ))
    if settings.COMMERCIAL_CA_URL:
        registry.register(CommercialCertificateAuthority(
            provider_id=settings.COMMERCIAL_CA_PROVIDER_ID,
            name=settings.COMMERCIAL_CA_NAME,
            api_endpoint=settings.COMMERCIAL_CA_URL,
            api_key=settings.COMMERCIAL_CA_API_KEY,
            **external_options
        ))
    return registry
