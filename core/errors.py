"""
Error taxonomy for the face authentication pipeline.

ServiceError is the terminal outcome of every engine operation. The remaining
exceptions are raised by individual components and translated into a
ServiceError by the engine.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Kind of a terminal service failure."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL = "INTERNAL"


class ServiceError(Exception):
    """
    Terminal error of a service operation.

    VALIDATION_FAILED and NOT_FOUND are expected, user-facing outcomes.
    INTERNAL is unexpected and must not leak details to the caller.

    Attributes:
        code: The ErrorCode of this failure.
        message: Human-readable message, safe to show to the user
                 unless the code is INTERNAL.
        details: Optional structured context.
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"ServiceError(code={self.code.value}, message={self.message!r})"

    @classmethod
    def validation_failed(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ServiceError":
        return cls(ErrorCode.VALIDATION_FAILED, message, details)

    @classmethod
    def not_found(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ServiceError":
        return cls(ErrorCode.NOT_FOUND, message, details)

    @classmethod
    def unauthorized(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ServiceError":
        return cls(ErrorCode.UNAUTHORIZED, message, details)

    @classmethod
    def internal(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ServiceError":
        return cls(ErrorCode.INTERNAL, message, details)

    @property
    def is_validation_failed(self) -> bool:
        return self.code == ErrorCode.VALIDATION_FAILED

    @property
    def is_not_found(self) -> bool:
        return self.code == ErrorCode.NOT_FOUND

    @property
    def is_unauthorized(self) -> bool:
        return self.code == ErrorCode.UNAUTHORIZED

    @property
    def is_internal(self) -> bool:
        return self.code == ErrorCode.INTERNAL


class ConfigurationError(RuntimeError):
    """Required configuration (secrets, model files) is missing or invalid."""


class ModelLoadError(RuntimeError):
    """The face models could not be loaded."""


class InvalidImage(ValueError):
    """The buffer is empty or cannot be decoded as an image."""


class DecryptionFailed(ValueError):
    """
    An encrypted selfie could not be unwrapped.

    Attributes:
        attempts: One entry per candidate key tried, in order, each a
                  dict with the key label and the reason it failed.
    """

    def __init__(self, message: str, attempts: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.attempts = attempts or []
