"""HTTP API for the rebellion tracker."""

from .server import create_app

__all__ = ["create_app"]
