"""
Noterverse Backend — Application Package Initializer
======================================================

What: Marks the `app` directory as a Python package.
Who:  Imported by uvicorn (app.main:app), Alembic, and pytest.

Architecture Note:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Authorization Gate (dependency)   │  ← token → user → key
    ├─────────────────────────────────────┤
    │   Services (notes, crypto, users)   │  ← encrypt/decrypt, resolve
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← ciphertext only
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
