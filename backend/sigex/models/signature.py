from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import uuid

from pydantic import BaseModel, Field


def _utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC"""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


class SignatureRecord(BaseModel):
    """
    Immutable record of a digital signature.

    For a batch signature ``document_hash`` holds the combined hash and
    ``document_hashes`` the ordered constituent hashes; the order is part
    of the signed content.
    """
    signature_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_hash: str = Field(..., description="Hex SHA-256 of the signed content")
    signature_hex: str
    algorithm: str = Field(..., description="e.g. RSA-SHA256, ECDSA-SHA256")
    certificate_serial: str
    certificate_id: Optional[str] = None
    public_key_pem: str = Field(..., description="Signer public key snapshot")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    document_hashes: List[str] = Field(default_factory=list, description="Ordered batch hashes")
    document_ids: List[str] = Field(default_factory=list, description="Expediente documents covered")
    signer_id: Optional[str] = None

    @property
    def is_batch(self) -> bool:
        return bool(self.document_hashes)

    def export(self) -> Dict[str, Any]:
        """Audit/export representation"""
        data = {
            "signature_id": self.signature_id,
            "document_hash": self.document_hash,
            "signature": self.signature_hex,
            "algorithm": self.algorithm,
            "certificate_serial": self.certificate_serial,
            "public_key_pem": self.public_key_pem,
            "timestamp": _utc(self.timestamp).isoformat(),
            "signer_id": self.signer_id,
        }
        if self.is_batch:
            data["document_hashes"] = list(self.document_hashes)
        if self.document_ids:
            data["document_ids"] = list(self.document_ids)
        return data
