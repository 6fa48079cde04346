"""Persistent storage for the torrent index."""
