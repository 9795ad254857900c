"""
HTTP handlers for the Query Agent service.
"""

from .rest_handler import request_validation_handler, router

__all__ = ["router", "request_validation_handler"]
