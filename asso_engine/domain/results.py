# SPDX-License-Identifier: Apache-2.0

"""
Typed results returned by every engine operation.

Engine functions never raise across their boundary: failures come back as an
EngineError carrying one of four kinds, so callers can decide per kind
whether to retry, prompt the user, or fail hard.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models.entities import DomainEvent


class ErrorKind(str, Enum):
    """Error taxonomy of the engine."""
    VALIDATION = "validation_error"
    AUTHORIZATION = "authorization_error"
    INVARIANT = "invariant_violation"
    CONFLICT = "concurrency_conflict"


@dataclass
class EngineError:
    """Structured failure of an engine operation."""
    kind: ErrorKind
    message: str
    details: List[str] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        """Only stale reads may be retried, and only after re-fetching."""
        return self.kind == ErrorKind.CONFLICT


@dataclass
class ValidationResult:
    """Result of input validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str] = None

    def __post_init__(self):
        if self.warnings is None:
            self.warnings = []


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    missing_permissions: List[str] = None

    def __post_init__(self):
        if self.missing_permissions is None:
            self.missing_permissions = []


@dataclass
class OperationResult:
    """
    Outcome of a state-changing engine operation.

    `value` holds the new state (the write set) on success; `events` lists the
    domain events the operation emitted. Domain functions never publish.
    `GovernanceEngine` hands the events to its sink as soon as the command
    succeeds, before the caller has persisted the write set, so a sink that
    must not run ahead of the store should buffer events and flush them after
    the commit.
    """
    success: bool
    value: Any = None
    error: Optional[EngineError] = None
    events: List[DomainEvent] = field(default_factory=list)

    @classmethod
    def ok(cls, value: Any = None, events: Optional[List[DomainEvent]] = None) -> "OperationResult":
        return cls(success=True, value=value, events=list(events or []))

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, details: Optional[List[str]] = None) -> "OperationResult":
        return cls(success=False, error=EngineError(kind=kind, message=message, details=list(details or [])))

    @classmethod
    def invalid(cls, message: str, details: Optional[List[str]] = None) -> "OperationResult":
        return cls.fail(ErrorKind.VALIDATION, message, details)

    @classmethod
    def forbidden(cls, message: str, details: Optional[List[str]] = None) -> "OperationResult":
        return cls.fail(ErrorKind.AUTHORIZATION, message, details)

    @classmethod
    def violation(cls, message: str, details: Optional[List[str]] = None) -> "OperationResult":
        return cls.fail(ErrorKind.INVARIANT, message, details)

    @classmethod
    def conflict(cls, message: str, details: Optional[List[str]] = None) -> "OperationResult":
        return cls.fail(ErrorKind.CONFLICT, message, details)

    @classmethod
    def from_validation(cls, validation: ValidationResult, message: str) -> "OperationResult":
        return cls.invalid(message, validation.errors)

    @classmethod
    def from_authorization(cls, authorization: AuthorizationResult) -> "OperationResult":
        return cls.forbidden(authorization.reason or "Not permitted", authorization.missing_permissions)

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError, message: str) -> "OperationResult":
        details = [
            f"{'.'.join(str(loc) for loc in err['loc']) or 'value'}: {err['msg']}"
            for err in exc.errors()
        ]
        return cls.invalid(message, details)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None
