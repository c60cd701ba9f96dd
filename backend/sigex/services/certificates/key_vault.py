"""
Private key sealing.

Keys are stored as password-encrypted PKCS#8 PEM and only loaded inside
``PrivateKeyVault.unsealed``.
"""
import logging
from contextlib import contextmanager

from cryptography.hazmat.primitives import serialization

from ...core.exceptions import ValidationError

logger = logging.getLogger(__name__)


class PrivateKeyVault:
    """Seals and unseals private keys with the configured secret"""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Key encryption secret is required")
        self._secret = secret.encode()

    def seal(self, private_key) -> bytes:
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(self._secret)
        )

    @contextmanager
    def unsealed(self, sealed_key: bytes):
        """Yield the private key object; the reference is dropped on exit"""
        if not sealed_key:
            raise ValidationError("Certificate has no private key")
        try:
            private_key = serialization.load_pem_private_key(sealed_key, password=self._secret)
        except (ValueError, TypeError):
            logger.error("Unable to unseal private key")
            raise ValidationError("Private key could not be unsealed")
        try:
            yield private_key
        finally:
            del private_key

    def public_key(self, sealed_key: bytes):
        with self.unsealed(sealed_key) as private_key:
            return private_key.public_key()
