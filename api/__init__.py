"""
API Layer for the Password Manager Face Authentication backend

This package provides the FastAPI-based API layer that exposes:
- REST endpoints for face registration and face login
- REST endpoints for user management
- Health check endpoint
"""
