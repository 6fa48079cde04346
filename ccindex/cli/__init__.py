"""Command line interface for ccIndex."""
