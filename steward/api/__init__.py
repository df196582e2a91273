"""STEWARD API package."""
