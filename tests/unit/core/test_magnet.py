"""Tests for magnet link construction."""

from __future__ import annotations

import pytest

from ccindex.core.magnet import build_magnet_link

pytestmark = [pytest.mark.unit, pytest.mark.core]

INFO_HASH = bytes.fromhex("c12fe1c06bba254a9dc9f519b335aa7c1367a88a")


class TestBuildMagnetLink:
    """Test cases for build_magnet_link."""

    def test_hash_only(self):
        assert build_magnet_link(INFO_HASH) == (
            "magnet:?xt=urn:btih:c12fe1c06bba254a9dc9f519b335aa7c1367a88a"
        )

    def test_display_name_escaped(self):
        link = build_magnet_link(INFO_HASH, "Big Buck Bunny & friends")
        assert "&dn=Big%20Buck%20Bunny%20%26%20friends" in link

    def test_trackers_deduplicated_in_order(self):
        link = build_magnet_link(
            INFO_HASH,
            trackers=["udp://a:80", "http://b/announce", "udp://a:80"],
        )
        assert link.endswith("&tr=udp%3A%2F%2Fa%3A80&tr=http%3A%2F%2Fb%2Fannounce")
