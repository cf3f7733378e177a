"""
High-level use cases for the profile API.

Each service module orchestrates repositories to implement business rules
(save an address, move the default card, open a session, ...).

Routers (FastAPI endpoints) call these services instead of manipulating the
database or sessions directly.
"""
