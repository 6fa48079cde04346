"""Core torrent metadata handling: bencode, validation, hashing."""
