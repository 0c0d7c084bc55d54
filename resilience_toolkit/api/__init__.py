"""Introspection API."""
