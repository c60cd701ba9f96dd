"""
Blob storage for expediente documents and their signed artifacts.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict

from ..core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Key/value byte storage"""

    @abstractmethod
    async def put(self, key: str, data: bytes) -> str:
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Raises NotFoundError if the key does not exist"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @staticmethod
    def document_key(expediente_id: str, filename: str) -> str:
        """Key for a new expediente document: expediente/year/month/uuid_name"""
        now = datetime.utcnow()
        safe_name = Path(filename or "documento").name.replace(" ", "_")
        return f"{expediente_id}/{now.year}/{now.month:02d}/{uuid.uuid4().hex}_{safe_name}"

    @staticmethod
    def signed_artifact_key(archivo_key: str, signature_id: str) -> str:
        """Sidecar holding the exported SignatureRecord; one per signature"""
        return f"{archivo_key}.{signature_id}.firma.json"


class LocalBlobStorage(BlobStorage):
    """Stores blobs as files under a base directory"""

    def __init__(self, base_path: str):
        self.storage_path = Path(base_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.storage_path / key).resolve()
        if self.storage_path.resolve() not in path.parents:
            raise ValidationError(f"Invalid storage key: {key}")
        return path

    async def put(self, key: str, data: bytes) -> str:
        file_path = self._path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "wb") as f:
            f.write(data)
        logger.debug(f"Stored blob {key} ({len(data)} bytes)")
        return key

    async def get(self, key: str) -> bytes:
        file_path = self._path(key)
        if not file_path.exists():
            raise NotFoundError("Blob", key)
        with open(file_path, "rb") as f:
            return f.read()

    async def delete(self, key: str) -> bool:
        file_path = self._path(key)
        if file_path.exists():
            file_path.unlink()
            return True
        return False


class InMemoryBlobStorage(BlobStorage):

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> str:
        self._blobs[key] = bytes(data)
        return key

    async def get(self, key: str) -> bytes:
        if key not in self._blobs:
            raise NotFoundError("Blob", key)
        return self._blobs[key]

    async def delete(self, key: str) -> bool:
        return self._blobs.pop(key, None) is not None
