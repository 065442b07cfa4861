"""Checklist-to-issue synchronisation components.

Provides:
- Settings loaded from .env
- Structured logging
- Checklist parsing
- A GitHub client and a sync service with local state
- A small CLI surface
"""
