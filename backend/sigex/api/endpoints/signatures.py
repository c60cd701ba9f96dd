"""
Signature API endpoints

Handles digital signature operations including:
- Signing expediente documents, one at a time or in batch
- Rejecting documents pending signature
- Signing and verifying uploaded content
- Exporting signature records
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ...core.exceptions import NotFoundError
from ...models import DocumentClass, SignatureRecord
from ...schemas.expediente import DocumentResponse
from ...schemas.signature import (
    BatchSignRequest,
    RejectDocumentRequest,
    SignatureRecordResponse,
    SignDocumentRequest,
    VerificationResponse
)
from ...services.container import ServiceContainer
from ...services.signature.signature_verifier import VerificationResult
from ..deps import get_current_usuario, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


def _verification_response(result: VerificationResult, record: SignatureRecord) -> VerificationResponse:
    data = result.to_dict()
    data["verified_at"] = result.verified_at
    data["signature_id"] = record.signature_id
    return VerificationResponse.model_validate(data)


@router.post("/documents/{document_id}/sign", response_model=SignatureRecordResponse, status_code=201)
async def sign_document(
    document_id: str,
    body: SignDocumentRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    record = await services.signing.sign_document(document_id, body.certificate_id, usuario)
    return SignatureRecordResponse.from_model(record)


@router.post("/documents/{document_id}/reject", response_model=DocumentResponse)
async def reject_document(
    document_id: str,
    body: RejectDocumentRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    document = await services.signing.reject_document(document_id, usuario, body.motivo)
    return DocumentResponse.from_model(document)


@router.get("/documents/{document_id}", response_model=List[SignatureRecordResponse])
async def document_signatures(
    document_id: str,
    services: ServiceContainer = Depends(get_services)
):
    records = await services.signing.signatures_for_document(document_id)
    return [SignatureRecordResponse.from_model(r) for r in records]


@router.get("/documents/{document_id}/verify", response_model=List[VerificationResponse])
async def verify_document(
    document_id: str,
    signature_id: Optional[str] = Query(None),
    services: ServiceContainer = Depends(get_services)
):
    """Verify the stored content of a document against its signature records"""
    records = await services.signing.signatures_for_document(document_id)
    if signature_id:
        records = [r for r in records if r.signature_id == signature_id]
        if not records:
            raise NotFoundError("SignatureRecord", signature_id)

    results = []
    for record in records:
        contents = []
        for covered_id in record.document_ids or [document_id]:
            covered = await services.store.get_document(covered_id)
            if covered is None:
                raise NotFoundError("ExpedienteDocument", covered_id)
            contents.append(await services.blob_storage.get(covered.archivo_key))

        if record.is_batch:
            result = await services.verifier.verify_batch(contents, record)
        else:
            result = await services.verifier.verify(contents[0], record)
        results.append(_verification_response(result, record))
    return results


@router.post("/expedientes/{expediente_id}/batch", response_model=SignatureRecordResponse, status_code=201)
async def sign_expediente_batch(
    expediente_id: str,
    body: BatchSignRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """Sign the pending (or the listed) documents of an expediente with one signature"""
    record = await services.signing.sign_expediente_batch(
        expediente_id,
        body.certificate_id,
        usuario,
        document_ids=body.document_ids
    )
    return SignatureRecordResponse.from_model(record)


@router.post("/sign", response_model=SignatureRecordResponse, status_code=201)
async def sign_upload(
    file: UploadFile = File(...),
    certificate_id: str = Form(...),
    document_class: DocumentClass = Form(DocumentClass.NO_OFICIAL),
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    """Sign uploaded content that is not part of an expediente"""
    content = await file.read()
    certificate = await services.lifecycle.get_certificate(certificate_id)
    record = await services.signing.sign(content, certificate, document_class, usuario)
    return SignatureRecordResponse.from_model(record)


@router.post("/verify", response_model=VerificationResponse)
async def verify_upload(
    file: UploadFile = File(...),
    signature_id: str = Form(...),
    services: ServiceContainer = Depends(get_services)
):
    """Verify uploaded content against a stored single-document signature record"""
    record = await services.signing.get_signature(signature_id)
    result = await services.verifier.verify(await file.read(), record)
    return _verification_response(result, record)


@router.get("/{signature_id}", response_model=SignatureRecordResponse)
async def export_signature(
    signature_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return SignatureRecordResponse.from_model(await services.signing.get_signature(signature_id))
