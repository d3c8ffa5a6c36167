# Routes package init
"""
Noterverse Backend — API Routes Package
=========================================

Route Inventory:
    - notes.py:   GET    /api/notes            (list, paginated, tag filter)
                  POST   /api/notes            (create)
                  GET    /api/notes/{id}       (read)
                  PATCH  /api/notes/{id}       (update)
                  DELETE /api/notes/{id}       (delete)
    - me.py:      GET    /api/me               (current user)
    - health.py:  GET    /health               (service health, no auth)

Design Principle:
    Routes are THIN. They depend on require_auth, hand the AuthContext to a
    service, and set headers. No crypto and no user lookups happen here.
"""
