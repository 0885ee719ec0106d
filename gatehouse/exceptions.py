"""
gatehouse.exceptions — Domain Error Hierarchy
==============================================

Services raise these; the API maps ``status_code`` to the HTTP response
in a single exception handler, so routes stay free of try/except.
"""

from __future__ import annotations


class GatehouseError(Exception):
    """Base class for every business-rule failure."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(GatehouseError):
    """A referenced estate, visitor, pass, alert or user does not exist."""

    status_code = 404


class PermissionDenied(GatehouseError):
    """The caller's estate role does not allow the operation."""

    status_code = 403


class ValidationFailed(GatehouseError):
    """Input violates a domain rule (window too long, blacklisted visitor…)."""

    status_code = 400


class InvalidTransition(GatehouseError):
    """A pass or alert cannot move from its current status to the target."""

    status_code = 409

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(message or f"Cannot move from {current} to {target}")
        self.current = current
        self.target = target


class ConflictError(GatehouseError):
    """A uniqueness constraint could not be satisfied."""

    status_code = 409


class DeliveryError(GatehouseError):
    """An outbound SMS or email could not be delivered."""

    status_code = 502
