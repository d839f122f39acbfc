"""
Middleware package for the control API.

This package contains middleware classes that restrict the control API to
local clients and harden its responses.
"""

from .security import LocalOnlyMiddleware, SecurityHeadersMiddleware, is_local_client

__all__ = ["LocalOnlyMiddleware", "SecurityHeadersMiddleware", "is_local_client"]
