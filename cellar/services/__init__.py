"""
High-level use cases for the cellar API.

Each service module orchestrates the wine store (or the PIN allowlist) to
implement business rules. Routers call these services instead of touching
datasets or cookies directly.
"""
