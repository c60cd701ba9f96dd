"""
Signing Engine

Signs raw documents and expediente documents with a stored certificate.
The private key is unsealed only for the duration of a single signature.
"""
import json
import logging
from typing import List, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa, utils

from ...core.exceptions import (
    IntegrityError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError
)
from ...core.logging_config import set_expediente_context
from ...models import (
    Certificate,
    DocumentClass,
    EstadoFirma,
    ExpedienteDocument,
    SignatureRecord
)
from ...store.base import DurableStore
from ..certificates.key_vault import PrivateKeyVault
from ..storage import BlobStorage
from .hashing import combined_hash, document_hash

logger = logging.getLogger(__name__)


class SigningEngine:
    """Service for producing signature records"""

    def __init__(self, store: DurableStore, lifecycle, vault: PrivateKeyVault, blob_storage: BlobStorage):
        self.store = store
        self.lifecycle = lifecycle
        self.vault = vault
        self.blob_storage = blob_storage

    def _sign_digest(self, certificate: Certificate, digest: bytes):
        """Sign a SHA-256 digest; returns (signature_hex, algorithm)"""
        with self.vault.unsealed(certificate.encrypted_private_key) as private_key:
            if isinstance(private_key, rsa.RSAPrivateKey):
                signature = private_key.sign(
                    digest,
                    padding.PSS(
                        mgf=padding.MGF1(hashes.SHA256()),
                        salt_length=padding.PSS.MAX_LENGTH
                    ),
                    utils.Prehashed(hashes.SHA256())
                )
                return signature.hex(), "RSA-SHA256"
            if isinstance(private_key, ec.EllipticCurvePrivateKey):
                signature = private_key.sign(digest, ec.ECDSA(utils.Prehashed(hashes.SHA256())))
                return signature.hex(), "ECDSA-SHA256"
            raise ValidationError(f"Unsupported key type: {type(private_key).__name__}")

    async def _signable_certificate(self, certificate_id: str, document_class: DocumentClass) -> Certificate:
        """Current certificate state, checked before any hashing or key use"""
        certificate = await self.lifecycle.get_certificate(certificate_id)
        self.lifecycle.ensure_signable(certificate, document_class)
        return certificate

    async def _sign_hash(
        self,
        certificate: Certificate,
        document_class: DocumentClass,
        content_hash: str,
        signer_id: Optional[str],
        document_hashes: Optional[List[str]] = None,
        document_ids: Optional[List[str]] = None
    ) -> SignatureRecord:
        """Produce a record under the certificate lock; the caller persists it"""
        async with self.lifecycle.certificate_lock(certificate.certificate_id):
            current = await self.lifecycle.get_certificate(certificate.certificate_id)
            self.lifecycle.ensure_signable(current, document_class)

            signature_hex, algorithm = self._sign_digest(current, bytes.fromhex(content_hash))
            record = SignatureRecord(
                document_hash=content_hash,
                signature_hex=signature_hex,
                algorithm=algorithm,
                certificate_serial=current.serial_number,
                certificate_id=current.certificate_id,
                public_key_pem=current.public_key_pem,
                document_hashes=list(document_hashes or []),
                document_ids=list(document_ids or []),
                signer_id=signer_id
            )

        set_expediente_context(certificate_serial=current.serial_number)
        logger.info(
            f"Signature {record.signature_id} created with certificate {current.serial_number} ({algorithm})",
            extra={"certificate_id": current.certificate_id}
        )
        return record

    async def sign(
        self,
        document_bytes: bytes,
        certificate: Certificate,
        document_class: DocumentClass,
        signer_id: Optional[str] = None,
        document_ids: Optional[List[str]] = None
    ) -> SignatureRecord:
        """Sign raw bytes; the record keeps the hex SHA-256 of the content"""
        certificate = await self._signable_certificate(certificate.certificate_id, document_class)
        content_hash = document_hash(document_bytes)
        record = await self._sign_hash(certificate, document_class, content_hash, signer_id, document_ids=document_ids)
        return await self.store.insert_signature(record)

    async def sign_batch(
        self,
        documents: List[bytes],
        certificate: Certificate,
        document_class: DocumentClass,
        signer_id: Optional[str] = None,
        document_ids: Optional[List[str]] = None
    ) -> SignatureRecord:
        """One signature over the combined hash of the ordered documents"""
        if not documents:
            raise ValidationError("Batch signing needs at least one document")
        certificate = await self._signable_certificate(certificate.certificate_id, document_class)

        hashes_in_order = []
        for index, content in enumerate(documents):
            try:
                hashes_in_order.append(document_hash(content))
            except ValidationError as e:
                raise ValidationError(
                    f"Batch document {index} could not be hashed: {e.message}",
                    {"index": index}
                )

        record = await self._sign_hash(
            certificate,
            document_class,
            combined_hash(hashes_in_order),
            signer_id,
            document_hashes=hashes_in_order,
            document_ids=document_ids
        )
        return await self.store.insert_signature(record)

    # Expediente documents

    async def _load_document(self, document_id: str) -> ExpedienteDocument:
        document = await self.store.get_document(document_id)
        if document is None:
            raise NotFoundError("ExpedienteDocument", document_id)
        return document

    async def _verify_content(self, document: ExpedienteDocument):
        content = await self.blob_storage.get(document.archivo_key)
        computed = document_hash(content)
        if computed != document.content_hash:
            logger.error(
                f"Stored content of document {document.document_id} no longer matches its hash",
                extra={"documento_id": document.document_id}
            )
            raise IntegrityError(
                f"Document {document.document_id} content does not match its recorded hash",
                {"document_id": document.document_id, "recorded_hash": document.content_hash,
                 "computed_hash": computed}
            )

    async def _write_artifact(self, document: ExpedienteDocument, record: SignatureRecord) -> str:
        key = BlobStorage.signed_artifact_key(document.archivo_key, record.signature_id)
        await self.blob_storage.put(key, json.dumps(record.export(), indent=2).encode("utf-8"))
        return key

    async def _commit_signed(self, documents: List[ExpedienteDocument], record: SignatureRecord):
        """Store the record and move the documents to firmado in one transaction"""
        artifact_keys = {}
        try:
            for document in documents:
                artifact_keys[document.document_id] = await self._write_artifact(document, record)

            async def apply(tx):
                for document in documents:
                    await tx.update_document(
                        document.document_id,
                        document.estado_firma,
                        estado_firma=EstadoFirma.FIRMADO,
                        signature_id=record.signature_id,
                        usuario_firmante=record.signer_id,
                        fecha_firma=record.timestamp,
                        archivo_firmado_key=artifact_keys[document.document_id]
                    )
                await tx.insert_signature(record)

            await self.store.run_in_expediente_transaction(documents[0].expediente_id, apply)
        except Exception:
            for key in artifact_keys.values():
                await self.blob_storage.delete(key)
            raise

    @staticmethod
    def _ensure_signable_document(document: ExpedienteDocument):
        if document.estado_firma == EstadoFirma.RECHAZADO:
            raise InvalidTransitionError(
                document.estado_firma.value,
                "firmar",
                f"Document {document.document_id} was rejected and cannot be signed"
            )

    async def sign_document(self, document_id: str, certificate_id: str, signer_id: str) -> SignatureRecord:
        """Sign one expediente document and move it to firmado"""
        document = await self._load_document(document_id)
        self._ensure_signable_document(document)
        set_expediente_context(user_id=signer_id, expediente_id=document.expediente_id)

        certificate = await self._signable_certificate(certificate_id, document.document_class)
        await self._verify_content(document)

        record = await self._sign_hash(
            certificate,
            document.document_class,
            document.content_hash,
            signer_id,
            document_ids=[document.document_id]
        )
        await self._commit_signed([document], record)

        logger.info(
            f"Document {document.documento_nombre} (foja {document.numero_foja}) signed by {signer_id}",
            extra={"documento_id": document.document_id}
        )
        return record

    async def sign_expediente_batch(
        self,
        expediente_id: str,
        certificate_id: str,
        signer_id: str,
        document_ids: Optional[List[str]] = None
    ) -> SignatureRecord:
        """Batch-sign expediente documents in foja order (all pending ones by default)"""
        if await self.store.get_expediente(expediente_id) is None:
            raise NotFoundError("Expediente", expediente_id)
        set_expediente_context(user_id=signer_id, expediente_id=expediente_id)

        documents = await self.store.list_documents(expediente_id)
        if document_ids:
            wanted = set(document_ids)
            selected = [d for d in documents if d.document_id in wanted]
            missing = wanted - {d.document_id for d in selected}
            if missing:
                raise NotFoundError("ExpedienteDocument", ", ".join(sorted(missing)))
        else:
            selected = [d for d in documents if d.estado_firma == EstadoFirma.PENDIENTE]

        if not selected:
            raise ValidationError("No documents to sign", {"expediente_id": expediente_id})
        for document in selected:
            self._ensure_signable_document(document)

        document_class = (
            DocumentClass.OFICIAL
            if any(d.document_class == DocumentClass.OFICIAL for d in selected)
            else DocumentClass.NO_OFICIAL
        )
        certificate = await self._signable_certificate(certificate_id, document_class)
        for document in selected:
            await self._verify_content(document)

        hashes_in_order = [d.content_hash for d in selected]
        record = await self._sign_hash(
            certificate,
            document_class,
            combined_hash(hashes_in_order),
            signer_id,
            document_hashes=hashes_in_order,
            document_ids=[d.document_id for d in selected]
        )
        await self._commit_signed(selected, record)

        logger.info(f"Batch signature {record.signature_id} covers {len(selected)} documents of expediente {expediente_id}")
        return record

    async def reject_document(self, document_id: str, actor: str, motivo: str) -> ExpedienteDocument:
        """pendiente -> rechazado"""
        document = await self._load_document(document_id)
        if document.estado_firma != EstadoFirma.PENDIENTE:
            raise InvalidTransitionError(
                document.estado_firma.value,
                "rechazar_firma",
                f"Only pending documents can be rejected; document is {document.estado_firma.value}"
            )

        async def apply(tx):
            return await tx.update_document(
                document_id,
                EstadoFirma.PENDIENTE,
                estado_firma=EstadoFirma.RECHAZADO,
                motivo_rechazo=motivo,
                usuario_firmante=actor
            )

        updated = await self.store.run_in_expediente_transaction(document.expediente_id, apply)
        logger.info(f"Document {document_id} rejected by {actor}: {motivo}", extra={"documento_id": document_id})
        return updated

    async def signatures_for_document(self, document_id: str) -> List[SignatureRecord]:
        await self._load_document(document_id)
        return await self.store.list_signatures_for_document(document_id)

    async def get_signature(self, signature_id: str) -> SignatureRecord:
        record = await self.store.get_signature(signature_id)
        if record is None:
            raise NotFoundError("SignatureRecord", signature_id)
        return record
