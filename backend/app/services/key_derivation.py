"""
Noterverse Backend — Key Derivation Engine
============================================

What:  Derives a 256-bit note encryption key per user from the root secret.
Why:   Per-user keys mean a leaked ciphertext is bound to one account, and
       deriving them on demand means no key material ever sits in the database.
How:   HKDF-SHA256 (extract-and-expand) with the root secret as input keying
       material and the user's external id as context.
Who:   Constructed once at startup; used by the Request Authorization Gate.

Derivation Scheme (version 1, FROZEN):
    salt = b"noterverse/note-key/salt/v1"
    info = b"noterverse/note-key/v1" || uint32_be(len(id)) || id
        where id = external_id.encode("utf-8")
    key  = HKDF-SHA256(ikm=root_secret, salt, info, length=32)

    The length prefix makes the info encoding prefix-free: no two distinct
    external ids can produce the same info bytes.

    Changing ANY of these constants silently breaks decryption of every
    stored note. A new scheme gets a new KDF_VERSION, and notes record the
    version they were written with (notes.key_version).
"""

import hmac
import logging
import struct
import threading
from collections import OrderedDict
from typing import Optional
from uuid import UUID

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

KDF_VERSION = 1
KEY_LENGTH = 32
KDF_SALT = b"noterverse/note-key/salt/v1"
KDF_INFO_PREFIX = b"noterverse/note-key/v1"


class DerivedKey:
    """
    32 bytes of per-user key material.

    Wrapped so that repr(), str() and f-strings never print the bytes, and
    so equality is constant-time. Use `.material` to hand the raw key to the
    cipher.
    """

    __slots__ = ("_material", "version")

    def __init__(self, material: bytes, version: int = KDF_VERSION):
        if len(material) != KEY_LENGTH:
            raise ValueError(f"Derived key must be {KEY_LENGTH} bytes")
        self._material = bytes(material)
        self.version = version

    @property
    def material(self) -> bytes:
        return self._material

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DerivedKey):
            return NotImplemented
        return self.version == other.version and hmac.compare_digest(
            self._material, other._material
        )

    def __hash__(self) -> int:
        return hash((self.version, self._material))

    def __repr__(self) -> str:
        return f"<DerivedKey v{self.version} redacted>"

    __str__ = __repr__

    def __reduce__(self):
        raise TypeError("DerivedKey cannot be pickled")


def _kdf_info(external_id: str) -> bytes:
    id_bytes = external_id.encode("utf-8")
    return KDF_INFO_PREFIX + struct.pack(">I", len(id_bytes)) + id_bytes


def derive_key(root_secret: bytes, external_id: str) -> bytes:
    """
    Derive the raw 32-byte key for one external user id.

    Pure and deterministic: the same (root_secret, external_id) always
    yields the same bytes, across calls and process restarts.

    Raises:
        ConfigurationError: root_secret is empty
        ValueError: external_id is empty
    """
    if not root_secret:
        raise ConfigurationError("Root secret is empty; refusing to derive keys")
    if not external_id:
        raise ValueError("external_id must be a non-empty string")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        info=_kdf_info(external_id),
    )
    return hkdf.derive(root_secret)


class KeyCache:
    """
    In-memory map from internal user id to DerivedKey.

    Discipline:
        - Reads take no lock (a dict lookup is atomic under the GIL)
        - Writes and LRU reordering take a lock
        - max_entries == 0 means unbounded for the process lifetime
        - Never persisted or serialized
    """

    def __init__(self, max_entries: int = 0):
        self.max_entries = max_entries
        self._entries: "OrderedDict[UUID, DerivedKey]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, user_id: UUID) -> Optional[DerivedKey]:
        key = self._entries.get(user_id)
        if key is not None and self.max_entries:
            with self._lock:
                if user_id in self._entries:
                    self._entries.move_to_end(user_id)
        return key

    def put(self, user_id: UUID, key: DerivedKey) -> DerivedKey:
        with self._lock:
            existing = self._entries.get(user_id)
            if existing is not None:
                return existing
            self._entries[user_id] = key
            if self.max_entries and len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return key

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class KeyDerivationEngine:
    """
    Holds the root secret and hands out per-user keys.

    Construction validates the secret, and construction happens during
    application startup (see main.lifespan), so a missing secret stops the
    process before any request is served.
    """

    def __init__(self, root_secret: bytes, cache: Optional[KeyCache] = None):
        if isinstance(root_secret, str):
            root_secret = root_secret.encode("utf-8")
        if not root_secret or not root_secret.strip():
            raise ConfigurationError(
                "ROOT_SECRET is empty. The key derivation engine cannot start."
            )
        self._root_secret = root_secret
        self.cache = cache if cache is not None else KeyCache()
        logger.info(
            "KeyDerivationEngine ready (kdf=HKDF-SHA256 v%d, cache_max_entries=%s)",
            KDF_VERSION,
            self.cache.max_entries or "unbounded",
        )

    def __repr__(self) -> str:
        return "<KeyDerivationEngine root_secret=redacted>"

    def derive(self, external_id: str) -> DerivedKey:
        """Derive without touching the cache."""
        return DerivedKey(derive_key(self._root_secret, external_id))

    def key_for(self, user_id: UUID, external_id: str) -> DerivedKey:
        """
        Return the key for a resolved user, caching it by internal id.

        The cache is keyed by internal id, but the key itself is always
        derived from the external id; the internal id never feeds the KDF.
        """
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached
        return self.cache.put(user_id, self.derive(external_id))
