"""Authentication module (JWT verification and roles)."""
