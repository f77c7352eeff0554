"""Errors raised by the search and calling pipeline."""


class RezkyooError(Exception):
    """Base class for RezKyoo errors surfaced to API clients."""


class BatchNotFoundError(RezkyooError):
    """Raised when a batch id is unknown."""

    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Batch {batch_id} not found")
        self.batch_id = batch_id


class NoMoreCandidatesError(RezkyooError):
    """Raised when a batch has no further open candidates to dial."""


class NoCandidatesFoundError(RezkyooError):
    """Raised when the restaurant lookup failed or returned nothing."""


class NoEligibleCandidatesError(RezkyooError):
    """Raised when restaurants were found but none can be called."""


class LocationNotFoundError(RezkyooError):
    """Raised when the search location cannot be geocoded."""


class TelephonyNotConfiguredError(RezkyooError):
    """Raised when a call is placed without telephony credentials."""


class CallStateError(RezkyooError):
    """Raised when a call record would move backwards or change after ending."""
