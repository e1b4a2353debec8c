"""
Error taxonomy for Nexusflow.

Services raise these; the rollover engine and the batch generator catch them at
the per-user and per-template boundaries.
"""


class NexusflowError(Exception):
    """Base class for all Nexusflow errors."""


class ValidationError(NexusflowError, ValueError):
    """Malformed input: bad pattern entry, unknown status or board, bad month reference."""


class NotFoundError(NexusflowError):
    """A referenced record (client, template, task, link) does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class ConflictError(NexusflowError):
    """
    A write violated a uniqueness constraint.

    Raised by the database adapters. Inserts that tolerate an existing record use
    ON CONFLICT DO NOTHING instead; client task writes retry a taken order_index.
    """


class ExternalDependencyError(NexusflowError):
    """An external collaborator (notification delivery) failed."""


class TimezoneResolutionError(NexusflowError):
    """A user's timezone could not be resolved."""


class TransitionError(NexusflowError):
    """A status or board change is not allowed from the current state."""


class PermissionDeniedError(NexusflowError):
    """The acting party may not perform the requested transition."""
