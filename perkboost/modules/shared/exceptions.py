"""
Domain exceptions: business rules a caller broke.

These reach the caller as-is and are never retried automatically. They carry
the same structured fields as the infrastructure errors in
`perkboost.core.exceptions`, so one logging policy covers both.
"""

from __future__ import annotations

from typing import Any, Optional

from perkboost.core.exceptions import ErrorSeverity, StructuredError


class BoostDomainException(StructuredError):
    DEFAULT_SEVERITY = ErrorSeverity.INFO


class NotFoundError(BoostDomainException):
    """A perk, inventory row or boost does not exist."""

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        suffix = "" if identifier is None else f": {identifier}"
        super().__init__(
            f"{resource_type} not found{suffix}",
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(BoostDomainException):
    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(
            f"Invalid {field}: {message}",
            details={"field": field, "reason": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class OwnershipError(BoostDomainException):
    """
    The player has no inventory row for the perk (``quantity`` is None) or
    the row is out of stock.
    """

    def __init__(self, player_id: str, perk_id: int, quantity: Optional[int] = None) -> None:
        self.player_id = player_id
        self.perk_id = perk_id
        self.quantity = quantity
        if quantity is None:
            message = f"Player {player_id} does not own perk {perk_id}"
        else:
            message = f"Player {player_id} has no stock of perk {perk_id}"
        super().__init__(
            message,
            details={"player_id": player_id, "perk_id": perk_id, "quantity": quantity},
            error_code="PERK_NOT_OWNED",
        )


class InactivePerkError(BoostDomainException):
    def __init__(self, perk_id: int, perk_name: Optional[str] = None) -> None:
        self.perk_id = perk_id
        self.perk_name = perk_name
        super().__init__(
            f"Perk {perk_name or f'#{perk_id}'} is not active",
            details={"perk_id": perk_id, "perk_name": perk_name},
            error_code="PERK_INACTIVE",
        )


class InvalidPerkConfigurationError(BoostDomainException):
    """
    A perk's metadata bag cannot describe a usable effect.

    Bad catalog data rather than bad player input, hence WARNING.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, perk_id: Optional[int], key: str, reason: str) -> None:
        self.perk_id = perk_id
        self.key = key
        self.reason = reason
        super().__init__(
            f"Perk {perk_id} has invalid '{key}' configuration: {reason}",
            details={"perk_id": perk_id, "key": key, "reason": reason},
            error_code="INVALID_PERK_CONFIG",
        )


class FeatureDisabledError(BoostDomainException):
    # Toggles flip at runtime; the same call may succeed later.
    DEFAULT_RETRYABLE = True

    def __init__(self, feature: str) -> None:
        self.feature = feature
        super().__init__(
            f"Feature '{feature}' is currently disabled",
            details={"feature": feature},
            error_code="FEATURE_DISABLED",
        )
