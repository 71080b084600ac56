"""Persistence gateway tables and session management."""
