"""Shared helpers: checksums."""
