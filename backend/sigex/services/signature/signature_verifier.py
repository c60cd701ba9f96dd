"""
Signature Verification Service

Checks signature records against document content. Integrity (content vs
recorded hash) and authenticity (signature vs recorded public key) are
reported separately. Only public material is used.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from datetime import datetime

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, padding, ec, utils
from cryptography.exceptions import InvalidSignature

from ...core.exceptions import AuthenticityError, IntegrityError
from ...models import CertificateStatus, SignatureRecord
from .hashing import combined_hash, document_hash

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    integrity_valid: bool
    authenticity_valid: bool
    computed_hash: str
    recorded_hash: str
    algorithm: str
    certificate_serial: str
    certificate_status: Optional[CertificateStatus] = None
    is_batch: bool = False
    errors: List[str] = field(default_factory=list)
    verified_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def valid(self) -> bool:
        return self.integrity_valid and self.authenticity_valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "integrity_valid": self.integrity_valid,
            "authenticity_valid": self.authenticity_valid,
            "computed_hash": self.computed_hash,
            "recorded_hash": self.recorded_hash,
            "algorithm": self.algorithm,
            "certificate_serial": self.certificate_serial,
            "certificate_status": self.certificate_status.value if self.certificate_status else None,
            "is_batch": self.is_batch,
            "errors": list(self.errors),
            "verified_at": self.verified_at.isoformat()
        }


class SignatureVerifier:
    """Service for verifying digital signatures"""

    def __init__(self, lifecycle=None):
        """
        Args:
            lifecycle: optional CertificateLifecycleManager used to report the
                signer certificate's current status
        """
        self.lifecycle = lifecycle
        self.supported_algorithms = {
            "RSA-SHA256": (padding.PSS, hashes.SHA256),
            "RSA-SHA512": (padding.PSS, hashes.SHA512),
            "ECDSA-SHA256": (None, hashes.SHA256),
            "ECDSA-SHA384": (None, hashes.SHA384)
        }

    def verify_digest(self, digest: bytes, signature_hex: str, public_key_pem: str, algorithm: str) -> bool:
        """
        Verify a signature over a precomputed digest.

        Args:
            digest: Digest that was signed
            signature_hex: Hex-encoded signature
            public_key_pem: PEM-encoded SubjectPublicKeyInfo
            algorithm: Signature algorithm used

        Returns:
            True if the signature is valid, False otherwise
        """
        if algorithm not in self.supported_algorithms:
            logger.error(f"Unsupported signature algorithm: {algorithm}")
            return False

        try:
            signature_bytes = bytes.fromhex(signature_hex)
            public_key = serialization.load_pem_public_key(public_key_pem.encode())
        except ValueError as e:
            logger.error(f"Malformed signature material: {e}")
            return False

        padding_type, hash_algorithm = self.supported_algorithms[algorithm]
        prehashed = utils.Prehashed(hash_algorithm())

        try:
            if algorithm.startswith("RSA"):
                if not isinstance(public_key, rsa.RSAPublicKey):
                    logger.error("Recorded key is not an RSA public key")
                    return False
                public_key.verify(
                    signature_bytes,
                    digest,
                    padding_type(
                        mgf=padding.MGF1(hash_algorithm()),
                        salt_length=padding.PSS.MAX_LENGTH
                    ),
                    prehashed
                )
            else:
                if not isinstance(public_key, ec.EllipticCurvePublicKey):
                    logger.error("Recorded key is not an EC public key")
                    return False
                public_key.verify(signature_bytes, digest, ec.ECDSA(prehashed))
        except InvalidSignature:
            logger.warning("Signature verification failed - invalid signature")
            return False
        except ValueError as e:
            logger.warning(f"Signature verification failed: {e}")
            return False

        return True

    async def _certificate_status(self, record: SignatureRecord) -> Optional[CertificateStatus]:
        if self.lifecycle is None:
            return None
        return await self.lifecycle.status_for_serial(record.certificate_serial)

    async def _verify_hash(
        self,
        computed_hash: str,
        record: SignatureRecord,
        errors: List[str]
    ) -> VerificationResult:
        integrity_valid = computed_hash == record.document_hash
        if not integrity_valid:
            errors.append("Document content does not match the recorded hash")

        try:
            digest = bytes.fromhex(record.document_hash)
        except ValueError:
            digest = b""
            errors.append("Recorded hash is not valid hex")

        authenticity_valid = bool(digest) and self.verify_digest(
            digest,
            record.signature_hex,
            record.public_key_pem,
            record.algorithm
        )
        if not authenticity_valid:
            errors.append("Signature does not verify against the recorded public key")

        result = VerificationResult(
            integrity_valid=integrity_valid,
            authenticity_valid=authenticity_valid,
            computed_hash=computed_hash,
            recorded_hash=record.document_hash,
            algorithm=record.algorithm,
            certificate_serial=record.certificate_serial,
            certificate_status=await self._certificate_status(record),
            is_batch=record.is_batch,
            errors=errors
        )
        logger.info(
            f"Verified signature {record.signature_id}: integrity={integrity_valid} authenticity={authenticity_valid}"
        )
        return result

    async def verify(self, document_bytes: bytes, record: SignatureRecord) -> VerificationResult:
        """Verify a single-document signature record against document content"""
        return await self._verify_hash(document_hash(document_bytes), record, [])

    async def verify_batch_hashes(self, hashes_in_order: List[str], record: SignatureRecord) -> VerificationResult:
        """Verify a batch record against ordered per-document hashes; order matters"""
        errors = []
        if list(hashes_in_order) != list(record.document_hashes):
            errors.append("Document hashes do not match the recorded batch order")
        return await self._verify_hash(combined_hash(hashes_in_order), record, errors)

    async def verify_batch(self, documents: List[bytes], record: SignatureRecord) -> VerificationResult:
        return await self.verify_batch_hashes([document_hash(d) for d in documents], record)

    @staticmethod
    def require_valid(result: VerificationResult) -> VerificationResult:
        if not result.integrity_valid:
            raise IntegrityError(
                "Document content does not match the signed hash",
                {"computed_hash": result.computed_hash, "recorded_hash": result.recorded_hash}
            )
        if not result.authenticity_valid:
            raise AuthenticityError(
                "Signature is not authentic",
                {"certificate_serial": result.certificate_serial, "algorithm": result.algorithm}
            )
        return result

    async def verification_report(self, document_bytes: bytes, record: SignatureRecord) -> Dict[str, Any]:
        """
        Create a verification report for audit/export.

        Args:
            document_bytes: Original signed content (a single document)
            record: Signature record to verify

        Returns:
            Verification report
        """
        result = await self.verify(document_bytes, record)
        return {
            "verification_timestamp": result.verified_at.isoformat(),
            "signature_info": record.export(),
            "verification_results": result.to_dict(),
            "overall_valid": result.valid
        }

    def get_supported_algorithms(self) -> list:
        """Get list of supported signature algorithms"""
        return list(self.supported_algorithms.keys())
