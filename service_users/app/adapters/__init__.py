"""
Adapters package for the console data layer.

Contains the HTTP client for the remote users API. The adapter
encapsulates:

- Base URL, auth header and request shapes
- Response normalisation into domain models
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .users_client import UsersApiClient

__all__ = ["UsersApiClient"]
