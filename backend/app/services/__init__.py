# Services package init
"""
Noterverse Backend — Services Layer
=====================================

Service Inventory (leaf-first):
    - KeyResolver (abstract) / GoogleKeyResolver: issuer signing keys (JWKS)
    - IdentityVerifier: ID token signature and claim checks
    - UserStore (abstract) / SqlAlchemyUserStore, UserResolver: create-or-fetch users
    - KeyDerivationEngine: HKDF per-user keys from the root secret
    - NoteCipher: AES-256-GCM envelopes
    - RequestAuthorizationGate: verify → resolve → derive, per request
    - NoteService: encrypted note CRUD

The abstract capabilities (KeyResolver, UserStore) are what the core
depends on; tests substitute in-memory fakes for both.
"""
