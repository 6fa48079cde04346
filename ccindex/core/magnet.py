"""Magnet URI construction (BEP 9)."""

from __future__ import annotations

from urllib.parse import quote


def build_magnet_link(
    info_hash: bytes,
    display_name: str | None = None,
    trackers: list[str] | None = None,
) -> str:
    """Build a ``magnet:?xt=urn:btih:`` URI.

    Args:
        info_hash: 20-byte info-hash
        display_name: Optional ``dn`` parameter
        trackers: Tracker URLs emitted as ``tr`` parameters, duplicates dropped

    Returns:
        Magnet URI string

    """
    parts = [f"xt=urn:btih:{info_hash.hex()}"]
    if display_name:
        parts.append(f"dn={quote(display_name, safe='')}")
    seen: set[str] = set()
    for url in trackers or []:
        if url in seen:
            continue
        seen.add(url)
        parts.append(f"tr={quote(url, safe='')}")
    return "magnet:?" + "&".join(parts)
