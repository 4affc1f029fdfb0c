"""
Vault encryption
AES-256-GCM with a random nonce per record, stored as "<nonce hex>:<ciphertext hex>"
"""

import hashlib
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from lib.error_handler import AppError

NONCE_LENGTH = 12


def derive_key(seed: str) -> bytes:
    """Derive a 32-byte key from the configured seed."""
    if not seed:
        raise ValueError("Vault encryption key seed must not be empty")
    return hashlib.sha256(seed.encode("utf-8")).digest()


class VaultCipher:
    """Symmetric cipher for vault passwords"""

    def __init__(self, seed: str):
        self.cipher = AESGCM(derive_key(seed))

    def encrypt(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_LENGTH)
        ciphertext = self.cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        try:
            nonce_hex, ciphertext_hex = token.split(":", 1)
            plaintext = self.cipher.decrypt(bytes.fromhex(nonce_hex), bytes.fromhex(ciphertext_hex), None)
        except (ValueError, InvalidTag) as e:
            raise AppError(f"Could not decrypt vault entry: {type(e).__name__}") from e
        return plaintext.decode("utf-8")
