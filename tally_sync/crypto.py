"""
RSA-OAEP encryption of short credentials.

The backend publishes an RSA public key; email addresses and OTP codes are
encrypted with OAEP (SHA-256 for both the digest and MGF1) before they
leave the machine. The padding must match the backend's decryptor exactly.

Usage:
    envelope = CryptoEnvelope.load(pem_text)
    ciphertext = envelope.encrypt("user@example.com")
"""
from __future__ import annotations
import base64
import binascii
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import EncryptionError, KeyFormatError

PKCS1_HEADER = "BEGIN RSA PUBLIC KEY"
SPKI_HEADER = "BEGIN PUBLIC KEY"

# OAEP overhead with SHA-256: 2 * hash length + 2
OAEP_SHA256_OVERHEAD = 2 * 32 + 2


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def load_public_key(key_text: str) -> rsa.RSAPublicKey:
    """
    Load an RSA public key from PEM (PKCS#1 or PKCS#8/SPKI) or base64 DER.

    The format is chosen by header substring; text without a PEM header is
    decoded as base64 DER SubjectPublicKeyInfo.

    Raises:
        KeyFormatError: If the text is none of the supported encodings
    """
    if not key_text or not key_text.strip():
        raise KeyFormatError("Public key is empty")

    key_text = key_text.replace("\r\n", "\n").strip()
    try:
        if PKCS1_HEADER in key_text or SPKI_HEADER in key_text:
            # load_pem_public_key understands both header styles
            key = serialization.load_pem_public_key(key_text.encode("ascii"))
        else:
            der = base64.b64decode("".join(key_text.split()), validate=True)
            key = serialization.load_der_public_key(der)
    except (ValueError, TypeError, binascii.Error, UnsupportedAlgorithm, UnicodeEncodeError) as e:
        raise KeyFormatError(f"Unrecognised public key format: {e}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyFormatError(f"Expected an RSA public key, got {type(key).__name__}")
    return key


class CryptoEnvelope:
    """Holds one RSA public key and encrypts short strings with it."""

    def __init__(self, public_key: Optional[rsa.RSAPublicKey] = None):
        self._public_key = public_key

    @classmethod
    def load(cls, key_text: str) -> "CryptoEnvelope":
        return cls(load_public_key(key_text))

    @property
    def is_loaded(self) -> bool:
        return self._public_key is not None

    @property
    def max_plaintext_bytes(self) -> int:
        if self._public_key is None:
            return 0
        return self._public_key.key_size // 8 - OAEP_SHA256_OVERHEAD

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a UTF-8 string and return base64 ciphertext.

        OAEP is randomized: encrypting the same text twice gives different
        ciphertexts.

        Raises:
            EncryptionError: If no key is loaded or the text exceeds OAEP capacity
        """
        if self._public_key is None:
            raise EncryptionError("RSA public key not available")

        data = plaintext.encode("utf-8")
        if len(data) > self.max_plaintext_bytes:
            raise EncryptionError(
                f"Plaintext is {len(data)} bytes; "
                f"this key can encrypt at most {self.max_plaintext_bytes}"
            )

        try:
            ciphertext = self._public_key.encrypt(data, _oaep())
        except ValueError as e:
            raise EncryptionError(f"RSA encryption failed: {e}") from e
        return base64.b64encode(ciphertext).decode("ascii")
