"""
FastAPI server for SkyCommand ATC.
"""

from skycommand.server.app import create_app

__all__ = ["create_app"]
