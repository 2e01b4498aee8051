"""Stable text hashing.

The hash is the primary key of an item across synchronization and retrieval.
It must be identical across processes and restarts, so Python's built-in
``hash()`` is not usable here.
"""

import hashlib
from functools import lru_cache

# 52 bits keep the value a safe integer for JSON consumers
_HASH_HEX_DIGITS = 13


@lru_cache(maxsize=10000)
def get_string_hash(text: str) -> int:
    """Returns the stable integer hash of a text.

    Args:
        text (str): The text to hash.

    Returns:
        int: The first 52 bits of the SHA-256 digest of the UTF-8 text.
    """
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return int(digest[:_HASH_HEX_DIGITS], 16)
