"""
Service layer custom exceptions.

The hierarchy mirrors how failures are treated by the alias engine:
data gaps degrade a signal, unreachable stores degrade every signal that
depends on them, bad input fails fast, and graph inconsistencies are
reported for manual cleanup.
"""

from typing import Any, Dict, List, Optional


class ServiceException(Exception):
    """Base exception for all service layer errors."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.service = service
        self.operation = operation
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        if self.service and self.operation:
            return f"[{self.service}.{self.operation}] {self.message}"
        return self.message


class DataUnavailableError(ServiceException):
    """Raised when a player has no qualifying stats or sessions for a signal."""

    def __init__(
        self,
        message: str,
        player_name: Optional[str] = None,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        data_context = context or {}
        if player_name:
            data_context["player_name"] = player_name
        super().__init__(
            message=f"Data unavailable: {message}",
            service=service,
            operation=operation,
            context=data_context,
        )


class ExternalStoreError(ServiceException):
    """Raised when a query against the graph, stat or session store fails."""

    def __init__(
        self,
        message: str,
        store: Optional[str] = None,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        store_context = context or {}
        if store:
            store_context["store"] = store
        self.store = store

        super().__init__(
            message=f"External store error: {message}",
            service=service,
            operation=operation,
            context=store_context,
            original_error=original_error,
        )


class ExternalStoreUnreachableError(ExternalStoreError):
    """Raised when a store cannot be reached or did not answer in time."""


class InvalidInputError(ServiceException):
    """Raised for input validation errors (empty names, bad windows, ...)."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        validation_context = context or {}
        if field:
            validation_context["field"] = field
        if value is not None:
            validation_context["value"] = str(value)
        self.field = field

        super().__init__(
            message=f"Invalid input: {message}",
            service=service,
            operation=operation,
            context=validation_context,
        )


class PlayerNotFoundError(InvalidInputError):
    """Raised when a compared player has never been observed."""

    def __init__(self, player_name: str, service: Optional[str] = None):
        super().__init__(
            message=f"player '{player_name}' not found",
            service=service,
            operation="lookup_player",
            field="player_name",
            value=player_name,
        )
        self.player_name = player_name


class SyncInconsistencyError(ServiceException):
    """Raised when the relationship graph violates its structural invariants."""

    def __init__(
        self,
        message: str,
        violations: Optional[List[Dict[str, Any]]] = None,
        service: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.violations = violations or []
        super().__init__(
            message=f"Sync inconsistency: {message}",
            service=service,
            operation=operation,
            context={"violation_count": len(self.violations)},
        )


class SyncAlreadyRunningError(ServiceException):
    """Raised when a relationship sync is requested while another one runs."""
