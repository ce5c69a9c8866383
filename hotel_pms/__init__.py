"""Hotel PMS backend: rooms, stays and their automatic status reconciliation."""

__version__ = '1.0.0'

from .app import create_app

__all__ = ['create_app', '__version__']
