"""Checklist parsing."""
