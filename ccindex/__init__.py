"""ccIndex: torrent metadata ingestion and index engine."""

__version__ = "0.1.0"
