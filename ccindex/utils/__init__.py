"""Utility modules for ccIndex."""
