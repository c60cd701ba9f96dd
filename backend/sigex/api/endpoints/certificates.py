"""
Certificate API endpoints

Issuance through the CA registry, two-phase request polling, PKCS#12
import, renewal and revocation.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ...models import CertificateAuthority, CertificateType, DocumentClass
from ...schemas.certificate import (
    CertificateIssueRequest,
    CertificateIssueResponse,
    CertificateRequestResponse,
    CertificateResponse,
    CertificateRevokeRequest,
    SigningCheckResponse
)
from ...services.container import ServiceContainer
from ..deps import get_current_usuario, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/authorities", response_model=List[CertificateAuthority])
async def list_authorities(services: ServiceContainer = Depends(get_services)):
    """Active certificate authority providers"""
    return services.registry.authorities()


@router.get("/types", response_model=List[CertificateType])
async def list_certificate_types(services: ServiceContainer = Depends(get_services)):
    return services.registry.certificate_types()


@router.post("", response_model=CertificateIssueResponse, status_code=201)
async def issue_certificate(
    body: CertificateIssueRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """
    Request a certificate.

    Internal certificates are returned immediately; government and
    commercial providers answer with a pending request to be polled.
    """
    result = await services.lifecycle.request_certificate(
        provider=body.provider,
        subject=body.subject,
        certificate_type=body.certificate_type,
        owner_id=body.owner_id or usuario
    )
    return CertificateIssueResponse.from_result(result)


@router.get("/requests/{request_id}", response_model=CertificateRequestResponse)
async def get_certificate_request(
    request_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return CertificateRequestResponse.from_model(await services.lifecycle.get_request(request_id))


@router.post("/requests/{request_id}/poll", response_model=CertificateRequestResponse)
async def poll_certificate_request(
    request_id: str,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """Ask the provider for the status of a pending request"""
    return CertificateRequestResponse.from_model(await services.lifecycle.poll_request(request_id))


@router.post("/import", response_model=CertificateResponse, status_code=201)
async def import_certificate(
    file: UploadFile = File(...),
    passphrase: Optional[str] = Form(None),
    certificate_type: str = Form("official_government"),
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """Import a .p12/.pfx container; the passphrase is used only for this call"""
    data = await file.read()
    certificate = await services.lifecycle.import_pkcs12(
        data,
        passphrase,
        owner_id=usuario,
        certificate_type=certificate_type
    )
    return CertificateResponse.from_model(certificate)


@router.get("", response_model=List[CertificateResponse])
async def list_certificates(
    owner_id: Optional[str] = Query(None),
    services: ServiceContainer = Depends(get_services)
):
    certificates = await services.lifecycle.list_certificates(owner_id)
    return [CertificateResponse.from_model(c) for c in certificates]


@router.get("/{certificate_id}", response_model=CertificateResponse)
async def get_certificate(
    certificate_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return CertificateResponse.from_model(await services.lifecycle.get_certificate(certificate_id))


@router.get("/{certificate_id}/signing-check", response_model=SigningCheckResponse)
async def signing_check(
    certificate_id: str,
    document_class: DocumentClass = Query(DocumentClass.NO_OFICIAL),
    services: ServiceContainer = Depends(get_services)
):
    """Whether the certificate may currently sign documents of the given class"""
    certificate = await services.lifecycle.get_certificate(certificate_id)
    return SigningCheckResponse(
        certificate_id=certificate_id,
        document_class=document_class,
        status=certificate.status,
        valid_for_signing=services.lifecycle.is_valid_for_signing(certificate, document_class)
    )


@router.post("/{certificate_id}/renew", response_model=CertificateIssueResponse, status_code=201)
async def renew_certificate(
    certificate_id: str,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    result = await services.lifecycle.renew(certificate_id)
    logger.info(f"Certificate {certificate_id} renewal requested by {usuario}")
    return CertificateIssueResponse.from_result(result)


@router.post("/{certificate_id}/revoke", response_model=CertificateResponse)
async def revoke_certificate(
    certificate_id: str,
    body: CertificateRevokeRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    certificate = await services.lifecycle.revoke(certificate_id, body.reason)
    logger.info(f"Certificate {certificate_id} revoked by {usuario}")
    return CertificateResponse.from_model(certificate)
