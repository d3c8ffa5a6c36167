"""
Noterverse Backend — Note Cipher
==================================

What:  Authenticated encryption of note content with a per-user key.
Why:   Notes at rest must be unreadable to anyone holding only the database,
       and tampering must be detected rather than decrypted into garbage.
How:   AES-256-GCM via `cryptography`. Each encrypt call draws a fresh 96-bit
       nonce from the OS CSPRNG; callers cannot supply one.

Envelope Layout:
    Stored form (three columns):  nonce(12) | ciphertext(n) | tag(16)
    Packed form (to_bytes):       version(1) | nonce(12) | ciphertext(n) | tag(16)

    Nonce and tag are fixed width, so the variable-length ciphertext is
    always unambiguously delimited.

Failure Policy:
    decrypt() raises exactly one error type with one message for every
    failure: wrong key, flipped bit, truncated blob, wrong associated data.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.exceptions import DecryptionError
from app.services.key_derivation import KEY_LENGTH, DerivedKey

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
ENVELOPE_VERSION = 1


@dataclass(frozen=True)
class Envelope:
    """Self-contained output of one encryption: enough to attempt decryption."""

    nonce: bytes
    ciphertext: bytes
    tag: bytes

    def __post_init__(self):
        if len(self.nonce) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
        if len(self.tag) != TAG_SIZE:
            raise ValueError(f"tag must be {TAG_SIZE} bytes")

    def __repr__(self) -> str:
        return f"Envelope(nonce={self.nonce.hex()}, ciphertext=<{len(self.ciphertext)} bytes>)"

    def to_bytes(self) -> bytes:
        return bytes([ENVELOPE_VERSION]) + self.nonce + self.ciphertext + self.tag

    @classmethod
    def from_bytes(cls, blob: bytes) -> "Envelope":
        """
        Parse a packed envelope.

        Raises:
            DecryptionError: wrong version byte or too short to hold nonce + tag
        """
        if len(blob) < 1 + NONCE_SIZE + TAG_SIZE or blob[0] != ENVELOPE_VERSION:
            raise DecryptionError()
        body = blob[1:]
        return cls(
            nonce=body[:NONCE_SIZE],
            ciphertext=body[NONCE_SIZE:-TAG_SIZE],
            tag=body[-TAG_SIZE:],
        )


def _key_bytes(key) -> bytes:
    if isinstance(key, DerivedKey):
        return key.material
    return bytes(key)


class NoteCipher:
    """
    Stateless AES-256-GCM encrypt/decrypt over Envelopes.

    Nonce generation lives here and only here. There is no parameter for a
    caller-chosen nonce, so a nonce is never reused under a key short of a
    96-bit random collision.
    """

    def encrypt(
        self,
        key,
        plaintext: bytes,
        associated_data: Optional[bytes] = None,
    ) -> Envelope:
        material = _key_bytes(key)
        if len(material) != KEY_LENGTH:
            raise ValueError(f"key must be {KEY_LENGTH} bytes")

        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(material).encrypt(nonce, plaintext, associated_data)
        # AESGCM appends the tag to the ciphertext
        return Envelope(
            nonce=nonce,
            ciphertext=sealed[:-TAG_SIZE],
            tag=sealed[-TAG_SIZE:],
        )

    def decrypt(
        self,
        key,
        envelope: Envelope,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """
        Verify the tag and return plaintext.

        Raises:
            DecryptionError: for every kind of failure, indistinguishably
        """
        try:
            material = _key_bytes(key)
            if (
                len(material) != KEY_LENGTH
                or len(envelope.nonce) != NONCE_SIZE
                or len(envelope.tag) != TAG_SIZE
            ):
                raise DecryptionError()
            return AESGCM(material).decrypt(
                envelope.nonce,
                envelope.ciphertext + envelope.tag,
                associated_data,
            )
        except (InvalidTag, ValueError, TypeError):
            raise DecryptionError() from None


note_cipher = NoteCipher()
