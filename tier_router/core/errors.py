"""
Error types for the tier router.

Business-logic failures (bad tier, bad input) are kept apart from
persistence failures so callers can tell "the request was wrong"
from "the data could not be saved".
"""

from typing import Optional, Sequence


class TierRouterError(Exception):
    """Base class for all tier router errors."""


class ConfigError(TierRouterError, ValueError):
    """Raised when router configuration is invalid."""

    def __init__(self, message: str, config_path: Optional[str] = None):
        super().__init__(message)
        self.config_path = config_path


class ValidationError(TierRouterError, ValueError):
    """Raised when caller-supplied input is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidStrategyError(ValidationError):
    """Raised when a strategy name is not one of the known strategies."""

    def __init__(self, strategy: str, available: Sequence[str]):
        super().__init__(
            f"Invalid strategy '{strategy}'. Available: {', '.join(available)}",
            field="strategy",
        )
        self.strategy = strategy
        self.available = tuple(available)


class InvalidTierError(TierRouterError):
    """Raised when a tier is not legal for the active strategy."""

    def __init__(self, tier: str, strategy: str, available: Sequence[str]):
        super().__init__(
            f"Invalid tier '{tier}' for {strategy} strategy. "
            f"Available: {', '.join(available)}"
        )
        self.tier = tier
        self.strategy = strategy
        self.available = tuple(available)


class UnknownModelReferenceError(TierRouterError):
    """Raised when a tier resolves to a provider/model missing from config."""

    def __init__(self, model_ref: str, message: Optional[str] = None):
        super().__init__(message or f"Unknown model reference: {model_ref}")
        self.model_ref = model_ref


class PersistenceError(TierRouterError):
    """Raised when the ledger or memory store cannot be read or written."""

    def __init__(self, message: str, path: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.operation = operation
