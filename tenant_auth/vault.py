"""
Credential primitives: opaque token wrapping, password hashing and digest
comparison.
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

import bcrypt
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tenant_auth.exceptions import EncryptionError

logger = logging.getLogger(__name__)

DEFAULT_COST_FACTOR = 10


class CredentialVault:
    """
    Symmetric wrap for link/cookie tokens (AES-256-CBC, PKCS7), bcrypt
    password hashing and SHA-256 digests.

    The configured key and IV are arbitrary strings; they are stretched to
    the 32 byte key and 16 byte IV AES-CBC needs with SHA-256.
    """

    def __init__(
        self,
        encrypt_key: Optional[str] = None,
        encrypt_iv: Optional[str] = None,
        cost_factor: int = DEFAULT_COST_FACTOR
    ):
        self.encrypt_key = encrypt_key
        self.encrypt_iv = encrypt_iv
        self.cost_factor = cost_factor

    @staticmethod
    def _derive(key: str, iv: str):
        key_bytes = hashlib.sha256(key.encode('utf-8')).digest()
        iv_bytes = hashlib.sha256(iv.encode('utf-8')).digest()[:16]
        return key_bytes, iv_bytes

    def encrypt_opaque(self, payload: str, key: str, iv: str) -> str:
        """
        Encrypt a string with AES-256-CBC and PKCS7 padding.

        Args:
            payload: Plain text to wrap
            key: Encryption key material
            iv: Initialization vector material

        Returns:
            Base64 ciphertext
        """
        key_bytes, iv_bytes = self._derive(key, iv)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(payload.encode('utf-8')) + padder.finalize()

        cipher = Cipher(algorithms.AES(key_bytes), modes.CBC(iv_bytes), backend=default_backend())
        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return base64.b64encode(ciphertext).decode('ascii')

    def decrypt_opaque(self, ciphertext: str, key: str, iv: str) -> str:
        """
        Reverse encrypt_opaque.

        Raises:
            EncryptionError: If the input is not valid base64, not block
                aligned, badly padded or not UTF-8 after decryption
        """
        key_bytes, iv_bytes = self._derive(key, iv)

        try:
            raw = base64.b64decode(ciphertext.encode('ascii'), validate=True)
            cipher = Cipher(algorithms.AES(key_bytes), modes.CBC(iv_bytes), backend=default_backend())
            decryptor = cipher.decryptor()
            padded = decryptor.update(raw) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode('utf-8')
        except (ValueError, UnicodeError) as e:
            # binascii.Error is a ValueError subclass
            logger.warning(f"Opaque token decryption failed: {e}")
            raise EncryptionError("Token could not be decrypted")

    def encrypt_token(self, token: str) -> str:
        """Wrap a token with the configured key and IV."""
        self._require_keys()
        return self.encrypt_opaque(token, self.encrypt_key, self.encrypt_iv)

    def decrypt_token(self, ciphertext: str) -> str:
        """Unwrap a token with the configured key and IV."""
        self._require_keys()
        return self.decrypt_opaque(ciphertext, self.encrypt_key, self.encrypt_iv)

    def _require_keys(self):
        if not self.encrypt_key or not self.encrypt_iv:
            raise EncryptionError("Encryption key and IV are not configured")

    def hash_password(self, plain: str, cost_factor: Optional[int] = None) -> str:
        """bcrypt hash of a password."""
        rounds = cost_factor or self.cost_factor
        return bcrypt.hashpw(plain.encode('utf-8'), bcrypt.gensalt(rounds)).decode('utf-8')

    @staticmethod
    def compare_password(plain: str, hashed: Optional[str]) -> bool:
        """Check a password against a bcrypt hash. Malformed hashes never match."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode('utf-8'), hashed.encode('utf-8'))
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    @staticmethod
    def keyed_hash(value: str) -> str:
        """SHA-256 hex digest."""
        return hashlib.sha256(value.encode('utf-8')).hexdigest()

    @staticmethod
    def hash_equals(a: str, b: str) -> bool:
        """Constant-time string comparison."""
        return hmac.compare_digest(a.encode('utf-8'), b.encode('utf-8'))
