"""Shared column types and id generation for data models."""
import secrets

from sqlalchemy import Numeric

# Pounds and pence, up to 13 digits before the point
MONEY = Numeric(precision=15, scale=2)


def generate_id(prefix: str) -> str:
    """Generate a unique ID with a prefix, e.g. ``fc_3f9a1c0b2d4e``."""
    return f"{prefix}_{secrets.token_hex(6)}"
