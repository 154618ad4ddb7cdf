"""
TuneBridge API Module

Provides the FastAPI status server.
"""

from src.api.server import app, set_status_publisher, get_status_publisher

__all__ = ['app', 'set_status_publisher', 'get_status_publisher']
