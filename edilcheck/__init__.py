"""Edil-Check local-first data layer for construction crew management."""

__VERSION__ = "1.0.0"
__API_VERSION__ = "1"
