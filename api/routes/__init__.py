"""
API Routes Package

This package contains route handlers organized by feature:
- users.py: Face registration, face login and user management
"""

from api.routes.users import router as users_router

__all__ = [
    "users_router",
]
