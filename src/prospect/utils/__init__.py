"""Utility modules for Prospect."""

from .urls import canonicalize_url, host_of, is_absolute_url, path_matches, resolve_link, same_host

__all__ = ["canonicalize_url", "host_of", "is_absolute_url", "path_matches", "resolve_link", "same_host"]
