"""
Noterverse Backend — Key Derivation Unit Tests
================================================

What:  Tests for HKDF key derivation, DerivedKey and KeyCache.
Why:   A derivation change would make every stored note unreadable, so the
       scheme is pinned here as well as exercised.

What we test:
    ✅ Determinism across calls and across engine instances
    ✅ Different users / different root secrets → different keys
    ✅ Empty root secret refuses to start
    ✅ Key material never appears in repr/str
    ✅ Cache is keyed by internal id and honours max_entries
"""

import pickle
import struct
from uuid import uuid4

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.exceptions import ConfigurationError
from app.services.key_derivation import (
    KDF_INFO_PREFIX,
    KDF_SALT,
    KDF_VERSION,
    KEY_LENGTH,
    DerivedKey,
    KeyCache,
    KeyDerivationEngine,
    derive_key,
)


class TestDeriveKey:
    """Tests for the pure derive_key function."""

    def test_same_inputs_same_key(self):
        assert derive_key(b"s3cr3t", "google-oauth2|12345") == derive_key(
            b"s3cr3t", "google-oauth2|12345"
        )

    def test_key_length(self):
        assert len(derive_key(b"s3cr3t", "user-A")) == KEY_LENGTH == 32

    def test_different_users_different_keys(self):
        assert derive_key(b"s3cr3t", "user-A") != derive_key(b"s3cr3t", "user-B")

    def test_different_root_secrets_different_keys(self):
        assert derive_key(b"s3cr3t", "user-A") != derive_key(b"other", "user-A")

    def test_matches_documented_scheme(self):
        """Pins salt, info layout and hash so an accidental change fails loudly."""
        external_id = "google-oauth2|12345"
        id_bytes = external_id.encode("utf-8")
        expected = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            info=KDF_INFO_PREFIX + struct.pack(">I", len(id_bytes)) + id_bytes,
        ).derive(b"s3cr3t")

        assert derive_key(b"s3cr3t", external_id) == expected
        assert KDF_SALT == b"noterverse/note-key/salt/v1"
        assert KDF_INFO_PREFIX == b"noterverse/note-key/v1"

    def test_unicode_external_id(self):
        key = derive_key(b"s3cr3t", "usér-ø")
        assert len(key) == 32
        assert key != derive_key(b"s3cr3t", "user-o")

    def test_empty_root_secret_rejected(self):
        with pytest.raises(ConfigurationError):
            derive_key(b"", "user-A")

    def test_empty_external_id_rejected(self):
        with pytest.raises(ValueError):
            derive_key(b"s3cr3t", "")


class TestDerivedKey:
    """Tests for the key wrapper."""

    def test_repr_does_not_leak_material(self):
        material = derive_key(b"s3cr3t", "user-A")
        key = DerivedKey(material)

        assert material.hex() not in repr(key)
        assert material.hex() not in str(key)
        assert material.hex() not in f"{key}"
        assert "redacted" in repr(key)

    def test_equality(self):
        material = derive_key(b"s3cr3t", "user-A")
        assert DerivedKey(material) == DerivedKey(material)
        assert DerivedKey(material) != DerivedKey(derive_key(b"s3cr3t", "user-B"))

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            DerivedKey(b"short")

    def test_cannot_be_pickled(self):
        with pytest.raises(TypeError):
            pickle.dumps(DerivedKey(derive_key(b"s3cr3t", "user-A")))

    def test_carries_version(self):
        assert DerivedKey(derive_key(b"s3cr3t", "user-A")).version == KDF_VERSION


class TestKeyDerivationEngine:
    """Tests for engine construction and caching."""

    def test_empty_secret_fails_construction(self):
        with pytest.raises(ConfigurationError):
            KeyDerivationEngine(b"")

    def test_whitespace_secret_fails_construction(self):
        with pytest.raises(ConfigurationError):
            KeyDerivationEngine("   ")

    def test_str_secret_accepted(self):
        assert KeyDerivationEngine("s3cr3t").derive("user-A") == KeyDerivationEngine(
            b"s3cr3t"
        ).derive("user-A")

    def test_restart_yields_same_key(self):
        """A fresh engine (e.g. after a process restart) derives the same key."""
        first = KeyDerivationEngine(b"s3cr3t").derive("google-oauth2|12345")
        second = KeyDerivationEngine(b"s3cr3t").derive("google-oauth2|12345")
        assert first == second

    def test_repr_hides_root_secret(self):
        assert "s3cr3t" not in repr(KeyDerivationEngine(b"s3cr3t"))

    def test_key_for_caches_by_internal_id(self):
        engine = KeyDerivationEngine(b"s3cr3t")
        user_id = uuid4()

        first = engine.key_for(user_id, "user-A")
        second = engine.key_for(user_id, "user-A")

        assert first is second
        assert len(engine.cache) == 1

    def test_key_for_derives_from_external_id(self):
        engine = KeyDerivationEngine(b"s3cr3t")
        assert engine.key_for(uuid4(), "user-A") == engine.derive("user-A")


class TestKeyCache:
    """Tests for the in-process key cache."""

    def test_unbounded_by_default(self):
        cache = KeyCache()
        for _ in range(50):
            cache.put(uuid4(), DerivedKey(derive_key(b"s3cr3t", "user-A")))
        assert len(cache) == 50

    def test_evicts_least_recently_used(self):
        cache = KeyCache(max_entries=2)
        a, b, c = uuid4(), uuid4(), uuid4()
        key = DerivedKey(derive_key(b"s3cr3t", "user-A"))

        cache.put(a, key)
        cache.put(b, key)
        cache.get(a)  # a is now most recently used
        cache.put(c, key)

        assert cache.get(a) is not None
        assert cache.get(b) is None
        assert cache.get(c) is not None

    def test_put_keeps_existing_entry(self):
        cache = KeyCache()
        user_id = uuid4()
        first = DerivedKey(derive_key(b"s3cr3t", "user-A"))
        second = DerivedKey(derive_key(b"s3cr3t", "user-A"))

        assert cache.put(user_id, first) is first
        assert cache.put(user_id, second) is first

    def test_clear(self):
        cache = KeyCache()
        cache.put(uuid4(), DerivedKey(derive_key(b"s3cr3t", "user-A")))
        cache.clear()
        assert len(cache) == 0
