"""
Core utilities shared across the profile service.

- configuration helpers (env vars, retry budgets, write policies)
- the error taxonomy returned to callers
- logging setup and the retry/backoff helper used around the store
"""
