"""
Persistence adapters.

Services depend on ResourceStore rather than touching SQLAlchemy sessions.
"""
