"""
API package for CodeBattle.

This package contains the Flask HTTP server shared by the admin console and
the team clients.
"""

from .server import create_app, run_api, success_response, error_response

__all__ = ["create_app", "run_api", "success_response", "error_response"]
