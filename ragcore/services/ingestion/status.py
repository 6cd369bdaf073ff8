"""Document status state machine.

Allowed transitions::

    pending    -> queued | processing
    queued     -> processing
    processing -> completed | failed | queued   (queued: a stalled job is redelivered)
    failed     -> processing            (retry: manual, or the next job attempt)

``completed`` is final.  Every status write in the orchestrator goes
through :func:`ensure_transition` and is then applied as a compare-and-set
against the status it was validated from.
"""

from __future__ import annotations

from ragcore.models.document import DocumentStatus
from ragcore.utils.errors import InvalidStatusTransitionError

_ALLOWED: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.QUEUED, DocumentStatus.PROCESSING}),
    DocumentStatus.QUEUED: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.COMPLETED, DocumentStatus.FAILED, DocumentStatus.QUEUED}
    ),
    DocumentStatus.FAILED: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.COMPLETED: frozenset(),
}

# States from which a manual retry may restart processing.
RETRYABLE_STATES = frozenset({DocumentStatus.FAILED, DocumentStatus.QUEUED})


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in _ALLOWED[current]


def ensure_transition(current: DocumentStatus, target: DocumentStatus) -> None:
    """Raise :class:`InvalidStatusTransitionError` unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            message=f"Cannot move document from {current.value} to {target.value}",
        )
