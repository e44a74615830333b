"""
ID generation utilities for CredTrail records.

Every persisted entity gets a short, prefixed, collision-resistant id.
"""

import hashlib
from uuid import uuid4


def generate_entity_id(prefix: str) -> str:
    """
    Generate a unique ID for any entity.

    Args:
        prefix: Entity type prefix (e.g., "usr", "lpr", "ses")

    Returns:
        ID like "usr-a1b2c3d4e5f60718"

    Examples:
        >>> id = generate_entity_id("usr")
        >>> id.startswith("usr-")
        True
        >>> len(id)
        20
    """
    unique_bytes = uuid4().bytes
    hash_digest = hashlib.sha256(unique_bytes).hexdigest()[:16]
    return f"{prefix}-{hash_digest}"


# Common entity prefixes
PREFIX_USER = "usr"
PREFIX_LEARNER_PROFILE = "lpr"
PREFIX_LEARNER_IDENTITY = "lid"
PREFIX_SESSION = "ses"
PREFIX_BADGE_TEMPLATE = "btp"
