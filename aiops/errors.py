"""
Error Taxonomy

Exceptions raised synchronously at the API boundary. Transient collaborator
failures (cache tiers, judge model, notifiers) never surface as exceptions;
they are logged and degraded where they happen.
"""


class AIOpsError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(AIOpsError):
    """
    Invalid configuration supplied by an operator.

    Raised for traffic splits that do not sum to 100, variant/split length
    mismatches, malformed time windows and unknown threshold metrics.
    No partial state is created when this is raised.
    """


class NotFoundError(AIOpsError):
    """Referenced test, alert, threshold or assessment does not exist."""


class InvalidTransitionError(AIOpsError):
    """Requested lifecycle transition is not allowed from the current state."""
