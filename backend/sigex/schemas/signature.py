from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from ..models import SignatureRecord


class SignDocumentRequest(BaseModel):
    """Request schema for signing an expediente document"""
    certificate_id: str


class BatchSignRequest(BaseModel):
    certificate_id: str
    document_ids: Optional[List[str]] = Field(None, description="Defaults to every pending document")


class RejectDocumentRequest(BaseModel):
    motivo: str = Field(..., min_length=1)


class SignatureRecordResponse(BaseModel):
    """Exported signature record"""
    signature_id: str
    document_hash: str
    signature: str
    algorithm: str
    certificate_serial: str
    certificate_id: Optional[str] = None
    public_key_pem: str
    timestamp: datetime
    signer_id: Optional[str] = None
    document_hashes: List[str] = Field(default_factory=list)
    document_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_model(cls, record: SignatureRecord) -> "SignatureRecordResponse":
        data = record.export()
        data["certificate_id"] = record.certificate_id
        data["timestamp"] = record.timestamp
        return cls.model_validate(data)


class VerificationResponse(BaseModel):
    valid: bool
    integrity_valid: bool
    authenticity_valid: bool
    computed_hash: str
    recorded_hash: str
    algorithm: str
    certificate_serial: str
    certificate_status: Optional[str] = None
    is_batch: bool = False
    errors: List[str] = Field(default_factory=list)
    verified_at: datetime
    signature_id: Optional[str] = None
