"""Property-based tests for bencode encoding/decoding.

Tests invariants of the codec using Hypothesis for automatic test case
generation.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ccindex.core.bencode import INT64_MAX, INT64_MIN, BencodeDecoder, decode, encode
from ccindex.utils.exceptions import MalformedEncodingError

pytestmark = [pytest.mark.property]

bencode_values = st.recursive(
    st.binary(max_size=32) | st.integers(min_value=INT64_MIN, max_value=INT64_MAX),
    lambda children: st.lists(children, max_size=5)
    | st.dictionaries(st.binary(max_size=8), children, max_size=5),
    max_leaves=20,
)


class TestBencodeProperties:
    """Property-based tests for bencode operations."""

    @given(bencode_values)
    @settings(max_examples=200)
    def test_roundtrip(self, value):
        """Test that decoding inverts encoding for every bencode value."""
        assert decode(encode(value)) == value

    @given(bencode_values)
    def test_encoding_is_canonical(self, value):
        """Test that re-encoding decoded canonical input is the identity."""
        data = encode(value)
        assert encode(BencodeDecoder(data).decode()) == data

    @given(st.text())
    def test_text_encoding(self, text):
        """Test text encodes as UTF-8 bytes."""
        assert decode(encode(text)) == text.encode("utf-8")

    @given(bencode_values, st.data())
    def test_truncated_input_rejected(self, value, data):
        """Test that every strict prefix of an encoding is malformed."""
        encoded = encode(value)
        cut = data.draw(st.integers(min_value=0, max_value=len(encoded) - 1))
        with pytest.raises(MalformedEncodingError):
            decode(encoded[:cut])

    @given(st.binary(max_size=64))
    def test_arbitrary_bytes(self, data):
        """Test that arbitrary input either decodes or fails cleanly."""
        try:
            value = decode(data)
        except MalformedEncodingError:
            return
        # Only dictionary key order can differ from the input
        assert len(encode(value)) == len(data)
