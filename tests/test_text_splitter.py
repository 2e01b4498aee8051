"""Tests for the recursive chunk splitter and item chunking."""

from services.chat_memory.SyncService import group_items, split_item
from shared.helper.hashing import get_string_hash
from shared.helper.text_splitter import split_recursive
from shared.models.memory import Item


def _item(text: str, index: int = 0, is_user: bool = False) -> Item:
    return Item(text=text, hash=get_string_hash(text), index=index, is_user=is_user)


class TestSplitRecursive:

    def test_short_text_single_piece(self):
        assert split_recursive("short", 100) == ["short"]

    def test_zero_size_disables_splitting(self):
        text = "x" * 500
        assert split_recursive(text, 0) == [text]

    def test_paragraphs_first(self):
        text = "first paragraph\n\nsecond paragraph"
        pieces = split_recursive(text, 20)
        assert pieces == ["first paragraph\n\n", "second paragraph"]

    def test_concatenation_restores_text(self):
        text = "Lorem ipsum dolor sit amet.\n\nConsectetur adipiscing elit, sed do\neiusmod tempor incididunt ut labore."
        for size in (5, 10, 17, 30, 64):
            pieces = split_recursive(text, size)
            assert "".join(pieces) == text
            assert all(len(p) <= size for p in pieces)

    def test_single_word_falls_back_to_characters(self):
        pieces = split_recursive("abcdefghij", 4)
        assert pieces == ["abcd", "efgh", "ij"]

    def test_no_delimiters_returns_whole_piece(self):
        text = "abcdefghij"
        assert split_recursive(text, 4, delimiters=[]) == [text]

    def test_merges_small_pieces(self):
        assert split_recursive("a b c d e f", 5) == ["a b ", "c d ", "e f"]


class TestSplitItem:

    def test_chunks_inherit_item_hash(self):
        item = _item("word " * 50, index=7)
        chunks = split_item(item, 40)
        assert len(chunks) > 1
        assert {c.hash for c in chunks} == {item.hash}
        assert [c.metadata.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.metadata.total_chunks == len(chunks) for c in chunks)
        assert all(c.metadata.message_id == 7 for c in chunks)
        assert all(c.metadata.original_message_hash == item.hash for c in chunks)

    def test_no_split(self):
        chunks = split_item(_item("hello"), 0)
        assert len(chunks) == 1
        assert chunks[0].text == "hello"
        assert chunks[0].metadata.source == "chat"


class TestGroupItems:

    def test_per_message_keeps_hashes(self):
        items = [_item("a", 0, True), _item("b", 1)]
        grouped = group_items(items, "per_message")
        assert [g.hash for g in grouped] == [i.hash for i in items]
        assert grouped[1].metadata["message_id"] == 1
        assert grouped[1].metadata["message_hashes"] == [items[1].hash]

    def test_conversation_turns_pairs(self):
        items = [_item("hi", 0, True), _item("hello", 1), _item("how are you", 2, True)]
        grouped = group_items(items, "conversation_turns")
        assert len(grouped) == 2
        assert grouped[0].text == "[User]: hi\n\n[Character]: hello"
        assert grouped[0].hash == get_string_hash(grouped[0].text)
        assert grouped[0].metadata["message_ids"] == [0, 1]
        assert grouped[1].metadata["message_ids"] == [2]

    def test_message_batch(self):
        items = [_item(f"m{i}", i, i % 2 == 0) for i in range(5)]
        grouped = group_items(items, "message_batch", batch_size=2)
        assert [g.metadata["message_ids"] for g in grouped] == [[0, 1], [2, 3], [4]]
        assert all(g.metadata["strategy"] == "message_batch" for g in grouped)
