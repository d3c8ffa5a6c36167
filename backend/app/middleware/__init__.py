# Middleware package init
"""
Noterverse Backend — Middleware Package
=========================================

Middleware Chain:
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID first, so every later log line can carry it
    2. Logging measures everything below it, including auth

Authentication is NOT middleware: it is the require_auth dependency, so
/health and the docs stay public and each route opts in explicitly.
"""
