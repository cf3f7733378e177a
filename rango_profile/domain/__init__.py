"""Domain types and rules for saved resources (no storage, no HTTP)."""
