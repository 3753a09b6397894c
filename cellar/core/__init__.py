"""
Core utilities shared across the cellar API.

- configuration (env vars, data paths, remote credentials, PIN allowlist)
- security helpers for the PIN gate
- rate limit helpers

Routers and services depend on these primitives instead of reading the
environment themselves.
"""
