"""AEAD cipher state used to seal and open tunnel packets."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

Aead = Union[AESGCM, ChaCha20Poly1305]

_TAG_SIZE = 16


class Endianness(enum.Enum):
    """Byte order of the message counter inside the nonce."""

    BIG = "big"
    LITTLE = "little"


class NoCipherStateError(RuntimeError):
    """Raised when encrypting without a cipher."""

    def __init__(self, message: str = "no cipher state available to encrypt") -> None:
        super().__init__(message)


def make_nonce(counter: int, endianness: Endianness = Endianness.BIG) -> bytes:
    """Return the 12 byte nonce: four zero bytes then the 64 bit counter."""
    return bytes(4) + (counter & 0xFFFFFFFFFFFFFFFF).to_bytes(8, endianness.value)


@dataclass
class NebulaCipherState:
    """Wraps an AEAD; with no AEAD it encrypts nothing and opens to empty bytes."""

    aead: Optional[Aead] = None
    endianness: Endianness = Endianness.BIG

    def encrypt_danger(self, ad: bytes, plaintext: bytes, counter: int) -> bytes:
        """Return ``ad`` followed by the sealed plaintext and tag.

        The counter must never be reused with the same key.
        """
        if self.aead is None:
            raise NoCipherStateError()
        nonce = make_nonce(counter, self.endianness)
        return bytes(ad) + self.aead.encrypt(nonce, bytes(plaintext), bytes(ad))

    def decrypt_danger(self, ad: bytes, ciphertext: bytes, counter: int) -> bytes:
        """Authenticate ``ad`` and open ``ciphertext``; raise ValueError on failure."""
        if self.aead is None:
            return b""
        nonce = make_nonce(counter, self.endianness)
        try:
            return self.aead.decrypt(nonce, bytes(ciphertext), bytes(ad))
        except InvalidTag as exc:
            raise ValueError("message authentication failed") from exc

    def overhead(self) -> int:
        return 0 if self.aead is None else _TAG_SIZE


def new_cipher_state(
    cipher: str, key: bytes, endianness: Optional[Endianness] = None
) -> NebulaCipherState:
    """Build a cipher state for ``aes`` (AES-GCM) or ``chachapoly``.

    Without an explicit endianness, ``aes`` uses a big endian counter and
    ``chachapoly`` a little endian one.
    """
    aead: Aead
    if cipher == "aes":
        aead = AESGCM(bytes(key))
        default = Endianness.BIG
    elif cipher == "chachapoly":
        aead = ChaCha20Poly1305(bytes(key))
        default = Endianness.LITTLE
    else:
        raise ValueError(f"unknown cipher: {cipher}")
    return NebulaCipherState(aead=aead, endianness=endianness or default)