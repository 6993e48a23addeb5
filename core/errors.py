"""
Exception types for the warden.

Only ConfigError is fatal. Everything else is caught at the smallest
meaningful boundary (per event, per Pact, per cycle) and logged.
"""

from typing import Optional


class WardenError(Exception):
    """Base class for all warden errors."""
    pass


class ConfigError(WardenError):
    """Required configuration missing or invalid. The process must not start."""
    pass


class UnknownEventError(WardenError):
    """Raised when the reducer receives an event type it has no handler for."""
    pass


class SnapshotQueryError(WardenError):
    """Raised when the Pact snapshot cannot be read. Aborts the current cycle only."""
    pass


class LedgerError(WardenError):
    """A ledger call failed. Carries the Pact address when known."""

    def __init__(self, message: str, pact_id: Optional[str] = None):
        super().__init__(message)
        self.pact_id = pact_id


class SimulationError(LedgerError):
    """Dry-run of recoverAssets() failed (already recovered, not expired, gas cap, ...)."""
    pass


class SubmissionError(LedgerError):
    """Signing or sending the transaction failed."""
    pass


class ConfirmationError(LedgerError):
    """Receipt could not be obtained (timeout, dropped transaction)."""
    pass
