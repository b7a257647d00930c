"""
Profiles Package
================

Protected routes that pass profile data and notification requests through to
external services.

Main Components:
----------------
- client.py: ProfileServiceClient (httpx)
- routes.py: /profile/{id}, /api/profiles, /api/notify
"""

from .client import ProfileServiceClient
from .routes import profiles_router

__all__ = ["ProfileServiceClient", "profiles_router"]
