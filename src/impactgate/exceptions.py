"""Custom exceptions for ImpactGate."""


class ImpactGateError(Exception):
    """Base exception for all ImpactGate errors."""


class ConfigError(ImpactGateError):
    """Configuration-related errors."""


class ProviderError(ImpactGateError):
    """Knowledge graph provider errors."""


class GateError(ImpactGateError):
    """Implementation gate errors."""


class InvalidBlockerError(GateError):
    """Raised when an approval references blockers that are not on the gate."""

    def __init__(self, invalid_ids: list[str]):
        self.invalid_ids = list(invalid_ids)
        super().__init__(f"Invalid blocker IDs: {', '.join(self.invalid_ids)}")
