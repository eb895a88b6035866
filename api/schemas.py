"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used for API communication between
the password manager frontend and this backend.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts

Face embeddings and image bytes never appear in any response model.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ============================================================
# Identity Schemas
# ============================================================

class IdentityResponse(BaseModel):
    """A registered user, without biometric data."""
    id: int = Field(..., description="Unique user identifier")
    email: str = Field(..., description="User's email address")
    created_at: Optional[str] = Field(None, description="ISO timestamp of registration")
    has_face: bool = Field(..., description="Whether a face is registered for this user")


class IdentityListResponse(BaseModel):
    """Response containing all registered users."""
    users: List[IdentityResponse] = Field(default_factory=list)
    total: int = Field(0, description="Total number of registered users")


class DeleteIdentityResponse(BaseModel):
    """Response from user deletion."""
    success: bool = Field(..., description="Whether deletion was successful")
    id: int = Field(..., description="ID of deleted user")
    email: str = Field(..., description="Email of deleted user")
    message: str = Field(..., description="Status message")


# ============================================================
# Authentication Schemas
# ============================================================

class LoginUser(BaseModel):
    """Identity claims carried by a session."""
    id: int = Field(..., description="User identifier")
    email: str = Field(..., description="User's email address")


class LoginResponse(BaseModel):
    """Successful face login."""
    user: LoginUser = Field(..., description="The authenticated user")
    token: str = Field(..., description="Signed session token (JWT)")


class TokenClaims(BaseModel):
    """Decoded session token."""
    id: int = Field(..., description="User identifier")
    email: str = Field(..., description="User's email address")
    iat: Optional[int] = Field(None, description="Issued-at (unix seconds)")
    exp: Optional[int] = Field(None, description="Expiry (unix seconds)")


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Error body returned for every failed request."""
    error: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional context")


# ============================================================
# Health Check Schemas
# ============================================================

class HealthResponse(BaseModel):
    """System health check response."""
    model_config = {"protected_namespaces": ()}  # Allow 'model_' prefix in field names

    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    model_loaded: bool = Field(..., description="Whether the face models are loaded")
    backend: str = Field(..., description="Face embedding backend in use")
    embedding_dim: int = Field(..., description="Embedding length produced by the backend")
    enrolled_users: int = Field(..., description="Number of registered users")
