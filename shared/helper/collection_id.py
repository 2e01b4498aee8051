"""Collection addressing.

A tenant (type, sourceId) maps to a single collection id string of the form
``vh_<type>_<sourceId>``. The source id may itself contain underscores; it is
always everything after the second segment.

Examples:
    vh_chat_a1b2c3        → (chat, "a1b2c3")
    vh_lorebook_world_01  → (lorebook, "world_01")
    some-legacy-id        → (chat, "some-legacy-id")
"""

from shared.models.memory import CollectionType, TenantKey

COLLECTION_PREFIX = "vh"
DELIMITER = "_"

_KNOWN_TYPES = {t.value for t in CollectionType}


def encode_collection_id(tenant: TenantKey) -> str:
    """Builds the collection id for a tenant.

    Args:
        tenant (TenantKey): The tenant to address.

    Returns:
        str: The collection id, e.g. "vh_chat_a1b2c3".
    """
    return DELIMITER.join([COLLECTION_PREFIX, tenant.type.value, tenant.source_id])


def decode_collection_id(collection_id: str) -> TenantKey:
    """Parses a collection id back into its tenant.

    Never fails: ids that do not have the expected prefix, an unknown type or
    fewer than three segments are treated as legacy chat collections whose
    source id is the whole input.

    Args:
        collection_id (str): The collection id to parse.

    Returns:
        TenantKey: The decoded tenant.
    """
    parts = collection_id.split(DELIMITER)
    if len(parts) >= 3 and parts[0] == COLLECTION_PREFIX and parts[1] in _KNOWN_TYPES:
        return TenantKey(type=CollectionType(parts[1]), source_id=DELIMITER.join(parts[2:]))
    return TenantKey(type=CollectionType.CHAT, source_id=collection_id)


def chat_tenant(chat_id: str) -> TenantKey:
    """Shorthand for the tenant of a chat session."""
    return TenantKey(type=CollectionType.CHAT, source_id=chat_id)
