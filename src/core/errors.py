"""Error taxonomy shared by the core and adapters."""

from __future__ import annotations

from typing import Optional


class ThreatscopeError(Exception):
    """Base class for all threatscope errors."""


class ConfigError(ThreatscopeError):
    """Raised when the configuration file or environment is unusable."""


class SourceFetchError(ThreatscopeError):
    """A single source could not be fetched or parsed. Never fatal."""

    def __init__(self, source_name: str, message: str) -> None:
        super().__init__(f"{source_name}: {message}")
        self.source_name = source_name


class ClassificationError(ThreatscopeError):
    """Classification failed for one item. The filter fails open."""


class StateStoreError(ThreatscopeError):
    """Base class for persisted-state failures."""


class LockAcquisitionFailed(StateStoreError):
    """The state lock could not be taken. Fatal to the run."""


class LockTimeout(LockAcquisitionFailed):
    """The retry budget for the state lock ran out."""


class StateCorruption(StateStoreError):
    """A state or backup file could not be read as a RunState."""


class StateSaveError(StateStoreError):
    """Writing the new state failed. Fatal to the run."""


class DeliveryFailure(ThreatscopeError):
    """A single entry could not be delivered. Never fatal."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class RateLimited(DeliveryFailure):
    """The sink asked us to slow down, optionally saying for how long."""

    def __init__(self, retry_after: Optional[float] = None) -> None:
        super().__init__("rate limited", code="429")
        self.retry_after = retry_after
