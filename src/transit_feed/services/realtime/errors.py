"""Errors raised while turning source rows into trip updates."""


class MalformedRowError(ValueError):
    """Raised when a source row cannot be read at all.

    Aborts the whole cycle: a source that returns rows we cannot parse is
    treated like a source that failed.
    """


class TripInvariantError(ValueError):
    """Raised when a single trip violates a structural invariant.

    Only the offending trip is dropped.
    """


class EmptyStopCollectionError(TripInvariantError):
    """Raised when a trip has no stops."""


class UnknownChangeTagError(TripInvariantError):
    """Raised when a change code does not map to a known tag."""
