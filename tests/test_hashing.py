"""Tests for stable content hashing."""

from shared.helper.hashing import get_string_hash


class TestStringHash:

    def test_stable_known_value(self):
        # first 13 hex digits of sha256("hello")
        assert get_string_hash("hello") == int("2cf24dba5fb0a", 16)

    def test_fits_in_52_bits(self):
        assert 0 <= get_string_hash("a much longer message " * 40) < 2 ** 52

    def test_distinct_texts(self):
        assert get_string_hash("Hello there") != get_string_hash("hello there")
