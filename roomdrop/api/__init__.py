"""
API Module - Relay Server
"""

from .server import create_app, run_relay_server

__all__ = ['create_app', 'run_relay_server']
