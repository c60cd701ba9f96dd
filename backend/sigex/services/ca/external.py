"""
Two-phase certificate authorities reached over HTTP.

The key pair is generated locally and only a CSR leaves the process. The
CA answers with a tracking id; the issued certificate is fetched later
through ``get_status``.

CA API contract (JSON):
    POST /solicitudes                  -> {request_id, status, required_documents, estimated_time, validation_url}
    GET  /solicitudes/{id}             -> {status, certificate_pem, reason}
    POST /certificados/{id}/revocar    -> {revoked}
    POST /identidad/validar            -> {valid, level}
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ...core.exceptions import ProviderRejectedError, ProviderUnavailableError
from ...models import CertificateAuthority, CertificateType, ProviderKind, RequestStatus, SubjectIdentity, TrustTier
from .base import CertificateAuthorityProvider, IdentityValidation, ProviderResult, build_x509_name
from .catalog import COMMERCIAL_CA, OFFICIAL_GOVERNMENT

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "pending": RequestStatus.PENDING,
    "pending_validation": RequestStatus.PENDING,
    "processing": RequestStatus.PENDING,
    "active": RequestStatus.ACTIVE,
    "issued": RequestStatus.ACTIVE,
    "failed": RequestStatus.FAILED,
    "rejected": RequestStatus.FAILED,
}


class ExternalCertificateAuthority(CertificateAuthorityProvider):
    """Base class for HTTP certificate authorities"""

    identity_fields: List[str] = []
    kind: ProviderKind = ProviderKind.COMMERCIAL

    def __init__(
        self,
        provider_id: str,
        name: str,
        api_endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        key_size: int = 2048,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_endpoint = api_endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.key_size = key_size
        self._transport = transport
        self.descriptor = CertificateAuthority(
            provider_id=provider_id,
            name=name,
            kind=self.kind,
            trust_tier=TrustTier.TRUSTED,
            api_endpoint=self.api_endpoint
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _json_body(self, response: httpx.Response, method: str, path: str) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise ProviderRejectedError(
                f"{self.descriptor.name} returned an unreadable response to {method} {path}",
                {"provider": self.provider_id, "status_code": response.status_code,
                 "content_type": response.headers.get("content-type")}
            )
        return body

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Call the CA; retries timeouts, connection errors and 5xx with exponential backoff"""
        attempts = self.max_retries + 1
        last_error = None

        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(
                    base_url=self.api_endpoint,
                    timeout=self.timeout,
                    transport=self._transport
                ) as client:
                    response = await client.request(method, path, json=payload, headers=self._headers())
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"{self.provider_id}: {method} {path} failed (attempt {attempt + 1}/{attempts}): {last_error}")
            else:
                if response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(f"{self.provider_id}: {method} {path} returned {response.status_code} (attempt {attempt + 1}/{attempts})")
                elif response.status_code >= 400:
                    raise ProviderRejectedError(
                        f"{self.descriptor.name} rejected the request: {self._error_reason(response)}",
                        {"provider": self.provider_id, "status_code": response.status_code}
                    )
                else:
                    return self._json_body(response, method, path)

            if attempt < attempts - 1:
                await asyncio.sleep(self.retry_backoff * (2 ** attempt))

        raise ProviderUnavailableError(
            f"{self.descriptor.name} is unavailable: {last_error}",
            {"provider": self.provider_id, "attempts": attempts}
        )

    @staticmethod
    def _error_reason(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        return body.get("reason") or body.get("detail") or body.get("message") or f"HTTP {response.status_code}"

    @staticmethod
    def _map_status(value: Optional[str]) -> RequestStatus:
        status = _STATUS_MAP.get((value or "").lower())
        if status is None:
            raise ProviderRejectedError(f"Unknown provider status: {value}", {"status": value})
        return status

    def _build_csr(self, subject: SubjectIdentity, private_key) -> str:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(build_x509_name(subject))
            .sign(private_key, hashes.SHA256())
        )
        return csr.public_bytes(serialization.Encoding.PEM).decode()

    def missing_identity_fields(self, subject: SubjectIdentity) -> List[str]:
        return [name for name in self.identity_fields if not getattr(subject, name)]

    async def request_certificate(self, subject: SubjectIdentity, certificate_type: CertificateType) -> ProviderResult:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
        payload = {
            "certificate_type": certificate_type.name,
            "subject": subject.model_dump(exclude_none=True),
            "csr_pem": self._build_csr(subject, private_key)
        }

        logger.info(f"Requesting {certificate_type.name} certificate from {self.descriptor.name} for {subject.nombre}")
        data = await self._request("POST", "/solicitudes", payload)

        status = self._map_status(data.get("status"))
        request_id = data.get("request_id")
        if not request_id:
            raise ProviderRejectedError(
                f"{self.descriptor.name} returned no request id",
                {"provider": self.provider_id}
            )

        return ProviderResult(
            status=status,
            external_id=request_id,
            certificate_pem=data.get("certificate_pem"),
            private_key=private_key,
            required_documents=list(data.get("required_documents") or []),
            estimated_time=data.get("estimated_time") or certificate_type.processing_time,
            validation_url=data.get("validation_url"),
            failure_reason=data.get("reason")
        )

    async def validate_identity(self, subject: SubjectIdentity) -> IdentityValidation:
        missing = self.missing_identity_fields(subject)
        if missing:
            return IdentityValidation(valid=False, missing_fields=missing)

        data = await self._request("POST", "/identidad/validar", subject.model_dump(exclude_none=True))
        return IdentityValidation(
            valid=bool(data.get("valid")),
            level=data.get("level"),
            details=data
        )

    async def get_status(self, external_id: str) -> ProviderResult:
        data = await self._request("GET", f"/solicitudes/{external_id}")
        status = self._map_status(data.get("status"))
        if status == RequestStatus.ACTIVE and not data.get("certificate_pem"):
            raise ProviderRejectedError(
                f"{self.descriptor.name} reported an active request without a certificate",
                {"provider": self.provider_id, "external_id": external_id}
            )
        return ProviderResult(
            status=status,
            external_id=external_id,
            certificate_pem=data.get("certificate_pem"),
            failure_reason=data.get("reason")
        )

    async def revoke(self, external_id: str, reason: Optional[str] = None) -> bool:
        data = await self._request("POST", f"/certificados/{external_id}/revocar", {"reason": reason})
        return bool(data.get("revoked", True))


class GovernmentCertificateAuthority(ExternalCertificateAuthority):
    """Government CA; identity needs DNI and CUIL"""

    identity_fields = ["dni", "cuil"]
    certificate_types = [OFFICIAL_GOVERNMENT]
    kind = ProviderKind.GOVERNMENT


class CommercialCertificateAuthority(ExternalCertificateAuthority):
    """Commercial CA; identity needs an email"""

    identity_fields = ["email"]
    certificate_types = [COMMERCIAL_CA]
    kind = ProviderKind.COMMERCIAL
