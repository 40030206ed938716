"""
Decorators for external store access and input validation.

``store_query`` gives every graph/session/stat store call its own timeout and
translates driver-specific failures into the service exception taxonomy, so
callers only ever see ``ExternalStoreError`` subclasses.
"""

import asyncio
import functools
import inspect
from typing import Any, Callable, Dict, Optional, ParamSpec, TypeVar

import structlog
from neo4j.exceptions import DriverError, Neo4jError, ServiceUnavailable, SessionExpired
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError

from .exceptions import (
    ExternalStoreError,
    ExternalStoreUnreachableError,
    InvalidInputError,
    ServiceException,
)

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

UNREACHABLE_ERRORS = (
    ServiceUnavailable,
    SessionExpired,
    OperationalError,
    InterfaceError,
    ConnectionError,
    OSError,
)


def store_query(
    store: str,
    timeout: Optional[float] = None,
    operation: Optional[str] = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator for async repository methods that query an external store.

    The timeout is taken from the argument, or else from the ``query_timeout``
    attribute of the bound repository instance. Cancellation is never caught.

    :param store: Store name for logging and error context (graph, session, stat)
    :param timeout: Timeout in seconds for the whole call
    :param operation: Operation name (defaults to the function name)
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        operation_name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            effective_timeout = timeout
            if effective_timeout is None and args:
                effective_timeout = getattr(args[0], "query_timeout", None)

            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs), timeout=effective_timeout
                )

            except ServiceException:
                raise

            except asyncio.TimeoutError as e:
                logger.warning(
                    "Store query timed out",
                    store=store,
                    operation=operation_name,
                    timeout_seconds=effective_timeout,
                )
                raise ExternalStoreUnreachableError(
                    message=f"{store} store did not answer within {effective_timeout}s",
                    store=store,
                    operation=operation_name,
                    original_error=e,
                ) from e

            except UNREACHABLE_ERRORS as e:
                logger.error(
                    "Store unreachable",
                    store=store,
                    operation=operation_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise ExternalStoreUnreachableError(
                    message=str(e),
                    store=store,
                    operation=operation_name,
                    original_error=e,
                ) from e

            except (Neo4jError, DriverError, SQLAlchemyError) as e:
                logger.error(
                    "Store query failed",
                    store=store,
                    operation=operation_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise ExternalStoreError(
                    message=str(e),
                    store=store,
                    operation=operation_name,
                    original_error=e,
                ) from e

        return wrapper  # type: ignore[return-value]

    return decorator


def input_validation(
    validate_non_empty: Optional[list[str]] = None,
    validate_non_negative: Optional[list[str]] = None,
    custom_validators: Optional[Dict[str, Callable[[Any], None]]] = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator for input validation in async service methods.

    :param validate_non_empty: Parameter names that must be non-blank strings
    :param validate_non_negative: Parameter names that must be numbers >= 0
    :param custom_validators: Dictionary of parameter_name -> validator_function

    :example:
        @input_validation(
            validate_non_empty=["player1", "player2"],
            validate_non_negative=["lookback_days"],
        )
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        sig = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            bound_args = sig.bind(*args, **kwargs)
            bound_args.apply_defaults()

            for param_name in validate_non_empty or []:
                value = bound_args.arguments.get(param_name)
                if value is None or (isinstance(value, str) and not value.strip()):
                    raise InvalidInputError(
                        f"{param_name} cannot be empty or whitespace",
                        operation=func.__name__,
                        field=param_name,
                    )

            for param_name in validate_non_negative or []:
                value = bound_args.arguments.get(param_name)
                if isinstance(value, (int, float)) and value < 0:
                    raise InvalidInputError(
                        f"{param_name} must not be negative",
                        operation=func.__name__,
                        field=param_name,
                        value=value,
                    )

            for param_name, validator in (custom_validators or {}).items():
                value = bound_args.arguments.get(param_name)
                if value is not None:
                    validator(value)

            return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
