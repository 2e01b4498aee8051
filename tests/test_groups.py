"""Tests for chunk groups and summary expansion."""

import pytest

from services.chat_memory.groups import (
    apply_exclusive_groups,
    apply_group_boost,
    enforce_required_groups,
    expand_summary_chunks,
)
from shared.models.memory import ChunkGroup, ChunkMetadata, RetrievalResult


def _result(h: int, score: float, **metadata) -> RetrievalResult:
    return RetrievalResult(hash=h, text=f"text {h}", score=score, original_score=score, metadata=ChunkMetadata(**metadata))


class TestChunkGroupModel:

    def test_bare_name(self):
        metadata = ChunkMetadata.model_validate({"chunkGroup": "tavern"})
        assert metadata.chunk_group == ChunkGroup(name="tavern")

    def test_wire_names(self):
        metadata = ChunkMetadata.model_validate({"chunkGroup": {"name": "tavern", "groupKeywords": ["Ale"], "requiresGroupMember": True}})
        assert metadata.chunk_group.keywords == ["Ale"]
        assert metadata.chunk_group.required
        assert not metadata.chunk_group.exclusive


class TestGroupBoost:

    def test_keyword_in_query_boosts_every_member(self):
        tavern = ChunkGroup(name="tavern", keywords=["Ale"])
        results = [_result(1, 0.5, chunk_group=tavern), _result(2, 0.4, chunk_group="tavern"), _result(3, 0.6)]
        triggered = apply_group_boost(results, "Bring me some ale!", 1.3)

        assert triggered == {"tavern"}
        assert results[0].score == pytest.approx(0.65)
        assert results[1].score == pytest.approx(0.52)
        assert results[2].score == 0.6

    def test_no_match(self):
        results = [_result(1, 0.5, chunk_group=ChunkGroup(name="tavern", keywords=["ale"]))]
        assert apply_group_boost(results, "the forest is dark", 1.3) == set()
        assert results[0].score == 0.5

    def test_capped(self):
        results = [_result(1, 0.9, chunk_group=ChunkGroup(name="tavern", keywords=["ale"]))]
        apply_group_boost(results, "ale", 1.5)
        assert results[0].score == 1.0


class TestExclusiveGroups:

    def test_only_best_member_survives(self):
        rivals = ChunkGroup(name="rivals", exclusive=True)
        results = [_result(1, 0.9), _result(2, 0.5, chunk_group=rivals), _result(3, 0.7, chunk_group=rivals)]
        kept, excluded = apply_exclusive_groups(results)
        assert [r.hash for r in kept] == [1, 3]
        assert excluded == [2]

    def test_inclusive_group_untouched(self):
        results = [_result(1, 0.5, chunk_group="friends"), _result(2, 0.7, chunk_group="friends")]
        kept, excluded = apply_exclusive_groups(results)
        assert len(kept) == 2
        assert excluded == []


class TestRequiredGroups:

    def test_missing_group_gets_best_candidate(self):
        hero = ChunkGroup(name="hero", required=True)
        ranked = [_result(1, 0.9)]
        candidates = ranked + [_result(2, 0.1, chunk_group=hero), _result(3, 0.2, chunk_group=hero)]
        assert [r.hash for r in enforce_required_groups(ranked, candidates)] == [3]

    def test_present_group_adds_nothing(self):
        hero = ChunkGroup(name="hero", required=True)
        ranked = [_result(1, 0.9, chunk_group=hero)]
        candidates = ranked + [_result(2, 0.5, chunk_group=hero)]
        assert enforce_required_groups(ranked, candidates) == []

    def test_limit(self):
        candidates = [_result(i, 0.1 * i, chunk_group=ChunkGroup(name=f"g{i}", required=True)) for i in range(1, 5)]
        assert [r.hash for r in enforce_required_groups([], candidates, max_to_add=2)] == [4, 3]


class TestSummaryExpansion:

    def test_parent_follows_summary(self):
        parent = _result(10, 0.2)
        summary = _result(11, 0.8, is_summary_chunk=True, parent_hash=10)
        expanded, added = expand_summary_chunks([summary, _result(12, 0.5)], [summary, parent])
        assert [r.hash for r in expanded] == [11, 10, 12]
        assert added == [10]

    def test_parent_not_repeated(self):
        parent = _result(10, 0.9)
        summary = _result(11, 0.8, is_summary_chunk=True, parent_hash=10)
        expanded, added = expand_summary_chunks([parent, summary], [parent, summary])
        assert [r.hash for r in expanded] == [10, 11]
        assert added == []

    def test_unknown_parent_is_skipped(self):
        summary = _result(11, 0.8, is_summary_chunk=True, parent_hash=99)
        expanded, added = expand_summary_chunks([summary], [summary])
        assert [r.hash for r in expanded] == [11]
        assert added == []
