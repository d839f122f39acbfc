"""
Local package for the MyTerm application.

This package provides the runtime configuration (`effective_settings`), the
process supervisor, project config handling, the workspace and the console.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
