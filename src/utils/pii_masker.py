"""
pii_masker.py
=============
SHA-256 hashing for user identifiers (user_pseudo_id, user_id).
Values are hashed before any logging. Never written to output.
"""
import hashlib


def mask(value: str) -> str:
    """Return a short SHA-256 hex prefix of the input string."""
    if not value or value == "None":
        return "EMPTY"
    return hashlib.sha256(value.strip().encode("utf-8")).hexdigest()[:12] + "..."
