"""Stackforge installer: a phase-driven orchestrator for plugin-built installs.

Core design goals:
- Fixed phase sequence, plugins answer in registration order
- One shared, explicit installation context
- Detail and summary logs, each with a single writer
- Every helper process cleaned up on every exit path
- One fault path; the failing step's status is the exit status
"""

__all__ = []
