"""
HTTP surface of the exporter.
"""

from .server import create_app

__all__ = ["create_app"]
