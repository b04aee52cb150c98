"""
Deterministic hashing utilities.

Plan identifiers must be stable across processes so that two resolutions of
the same invocation compare equal. ``compute_hash`` joins the string forms
of its arguments with ``|`` and takes a SHA-256 digest.
"""

import hashlib
import json
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Examples:
        >>> compute_hash("a", "b") != compute_hash("b", "a")
        True
        >>> len(compute_hash("test", length=16))
        16

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def canonical_json(value: Any) -> str:
    """Serialize ``value`` to JSON with sorted keys and no whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
