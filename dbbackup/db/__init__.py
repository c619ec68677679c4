"""Backup run history storage."""
