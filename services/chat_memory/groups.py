"""Chunk groups and summary expansion.

Chunks sharing a group name are ranked together: a group keyword found in the
query boosts every member, an exclusive group keeps only its best member, and
a required group always contributes at least one member. A summary chunk
brings its parent chunk along when the parent is among the retrieved hits.
"""

from shared.models.memory import RetrievalResult

DEFAULT_GROUP_BOOST = 1.3
MAX_FORCED_GROUP_MEMBERS = 5


def _group_name(result: RetrievalResult) -> str | None:
    group = result.metadata.chunk_group
    return group.name if group else None


def find_triggered_groups(results: list[RetrievalResult], query: str) -> set[str]:
    """Names of the groups with at least one keyword occurring in the query."""
    query_lower = query.lower()
    triggered: set[str] = set()
    for result in results:
        group = result.metadata.chunk_group
        if group is None or group.name in triggered:
            continue
        if any(k.strip() and k.strip().lower() in query_lower for k in group.keywords):
            triggered.add(group.name)
    return triggered


def apply_group_boost(results: list[RetrievalResult], query: str, multiplier: float = DEFAULT_GROUP_BOOST) -> set[str]:
    """Multiplies the score of every member of a triggered group, capped at 1.0.

    Returns:
        set[str]: The triggered group names.
    """
    triggered = find_triggered_groups(results, query)
    for result in results:
        if _group_name(result) in triggered:
            result.score = min(1.0, result.score * multiplier)
    return triggered


def apply_exclusive_groups(results: list[RetrievalResult]) -> tuple[list[RetrievalResult], list[int]]:
    """Keeps only the highest-scoring member of each exclusive group.

    Order of the remaining results is preserved.

    Returns:
        tuple[list[RetrievalResult], list[int]]: Kept results and the hashes of the dropped members.
    """
    winners: dict[str, RetrievalResult] = {}
    for result in results:
        group = result.metadata.chunk_group
        if group is None or not group.exclusive:
            continue
        best = winners.get(group.name)
        if best is None or result.score > best.score:
            winners[group.name] = result

    kept: list[RetrievalResult] = []
    excluded: list[int] = []
    for result in results:
        group = result.metadata.chunk_group
        if group is not None and group.exclusive and winners[group.name] is not result:
            excluded.append(result.hash)
            continue
        kept.append(result)
    return kept, excluded


def enforce_required_groups(results: list[RetrievalResult], candidates: list[RetrievalResult], max_to_add: int = MAX_FORCED_GROUP_MEMBERS) -> list[RetrievalResult]:
    """Appends the best candidate of every required group missing from the results.

    Args:
        results (list[RetrievalResult]): The ranked selection.
        candidates (list[RetrievalResult]): Every hit that may be forced in, whatever its score.
        max_to_add (int): Upper bound of forced members.

    Returns:
        list[RetrievalResult]: The forced members, in candidate score order.
    """
    present = {_group_name(r) for r in results}
    selected = {r.hash for r in results}
    best: dict[str, RetrievalResult] = {}
    for candidate in candidates:
        group = candidate.metadata.chunk_group
        if group is None or not group.required or group.name in present or candidate.hash in selected:
            continue
        current = best.get(group.name)
        if current is None or candidate.score > current.score:
            best[group.name] = candidate
    forced = sorted(best.values(), key=lambda r: r.score, reverse=True)
    return forced[:max_to_add]


def expand_summary_chunks(results: list[RetrievalResult], candidates: list[RetrievalResult]) -> tuple[list[RetrievalResult], list[int]]:
    """Places the parent chunk right after each summary chunk.

    Parents are looked up among the candidates by hash; a parent that is
    already selected is not repeated.

    Returns:
        tuple[list[RetrievalResult], list[int]]: Expanded results and the hashes of the added parents.
    """
    by_hash: dict[int, RetrievalResult] = {}
    for candidate in candidates:
        by_hash.setdefault(candidate.hash, candidate)

    seen: set[int] = set()
    expanded: list[RetrievalResult] = []
    added: list[int] = []
    for result in results:
        if result.hash not in seen:
            seen.add(result.hash)
            expanded.append(result)
        metadata = result.metadata
        if not metadata.is_summary_chunk or metadata.parent_hash is None:
            continue
        parent = by_hash.get(metadata.parent_hash)
        if parent is not None and parent.hash not in seen:
            seen.add(parent.hash)
            expanded.append(parent)
            added.append(parent.hash)
    return expanded, added
