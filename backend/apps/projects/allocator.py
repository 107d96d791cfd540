"""
Collision-free identifier allocation for projects and invoices.

Discipline (no unchecked increments anywhere):

1. Read the counter for the prefix (created on first use).
2. Format a candidate from the counter value.
3. Claim the candidate with create_only. A collision burns that sequence
   number and the loop moves to the next one.
4. Advance the counter past the claimed (or burned) sequence with a
   conditional, forward-only update.

Two concurrent allocators may read the same counter value; exactly one of
them wins the create_only for a given candidate, the other retries with the
next sequence number.
"""

import logging
import re
from dataclasses import dataclass

from django.conf import settings

from apps.audit.services import create_audit_entry
from apps.projects.models import AllocationMode, IdCounter, Project, ProjectIdClaim
from apps.store import entity_store
from apps.store.entity_store import AlreadyExists
from core.exceptions import CollisionExhaustedError, ValidationError

logger = logging.getLogger(__name__)

ORG_LETTER_PATTERN = re.compile(r"^[A-Z]$")
DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class AllocationResult:
    id: str
    attempts: int


def format_candidate(mode, org_letter, sequence):
    """T-R001 for request mode, T-001 for legacy mode."""
    if mode == AllocationMode.REQUEST:
        return f"{org_letter}-R{sequence:03d}"
    return f"{org_letter}-{sequence:03d}"


def _counter_for(prefix):
    counter = entity_store.read(IdCounter, prefix)
    if counter is not None:
        return counter
    try:
        return entity_store.create_only(IdCounter, prefix=prefix, next_sequence=1)
    except AlreadyExists:
        # Another allocator created it first.
        return entity_store.read(IdCounter, prefix)


def _advance(prefix, next_sequence):
    entity_store.advance_if_lower(
        IdCounter.objects.filter(prefix=prefix), "next_sequence", next_sequence
    )


def allocate(mode, org_letter, origin="request", max_attempts=None, actor_id=None):
    """
    Allocate a unique project identifier.

    Args:
        mode: 'request' ({L}-R001) or 'legacy' ({L}-001)
        org_letter: single uppercase letter identifying the organisation
        origin: 'match' or 'request', recorded on the claim
        max_attempts: collision budget, defaults to PROJECT_ID_MAX_ATTEMPTS

    Returns:
        AllocationResult: the claimed id and the number of attempts used

    Raises:
        ValidationError: malformed input or request ids disabled
        CollisionExhaustedError: every attempt collided
    """
    if mode not in AllocationMode.values:
        raise ValidationError(
            f"Unknown allocation mode: {mode}",
            {"mode": mode, "allowed": AllocationMode.values},
        )
    if not isinstance(org_letter, str) or not ORG_LETTER_PATTERN.match(org_letter):
        raise ValidationError(
            "Organisation letter must be a single uppercase letter A-Z",
            {"org_letter": org_letter},
        )
    if mode == AllocationMode.REQUEST and not getattr(
        settings, "ENABLE_REQUEST_PROJECT_IDS", True
    ):
        raise ValidationError(
            "Request-mode project identifiers are disabled",
            {"mode": mode},
            code="VALIDATION_FAILED",
        )
    if max_attempts is None:
        max_attempts = getattr(
            settings, "PROJECT_ID_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS
        )

    prefix = f"{org_letter}:{mode}"
    counter = _counter_for(prefix)
    sequence = counter.next_sequence
    tried = []

    for attempt in range(1, max_attempts + 1):
        candidate = format_candidate(mode, org_letter, sequence)
        tried.append(candidate)
        logger.info(
            "project_id_candidate",
            extra={
                "operation": "ALLOCATE_PROJECT_ID",
                "entity_id": candidate,
                "attempt": attempt,
            },
        )

        collided = Project.objects.filter(project_id=candidate).exists()
        if not collided:
            try:
                entity_store.create_only(
                    ProjectIdClaim, identifier=candidate, mode=mode, origin=origin
                )
            except AlreadyExists:
                collided = True

        if not collided:
            _advance(prefix, sequence + 1)
            create_audit_entry(
                event_type="PROJECT_ID_ALLOCATED",
                actor_id=actor_id,
                entity_type="ProjectIdClaim",
                entity_id=candidate,
                new_state={"mode": mode, "origin": origin, "attempts": attempt},
            )
            logger.info(
                "project_id_allocated",
                extra={
                    "operation": "ALLOCATE_PROJECT_ID",
                    "entity_id": candidate,
                    "attempt": attempt,
                },
            )
            return AllocationResult(id=candidate, attempts=attempt)

        logger.warning(
            "project_id_collision",
            extra={
                "operation": "ALLOCATE_PROJECT_ID",
                "entity_id": candidate,
                "attempt": attempt,
            },
        )
        create_audit_entry(
            event_type="PROJECT_ID_COLLISION",
            actor_id=actor_id,
            entity_type="ProjectIdClaim",
            entity_id=candidate,
            new_state={"mode": mode, "attempt": attempt},
        )
        sequence += 1

    # Burned candidates are never handed out again.
    _advance(prefix, sequence)
    create_audit_entry(
        event_type="PROJECT_ID_EXHAUSTED",
        actor_id=actor_id,
        entity_type="ProjectIdClaim",
        entity_id=prefix,
        new_state={"tried": tried},
    )
    logger.error(
        "project_id_exhausted",
        extra={"operation": "ALLOCATE_PROJECT_ID", "entity_id": prefix},
    )
    raise CollisionExhaustedError(
        f"Could not allocate a project id after {max_attempts} attempts",
        {"tried": tried, "attempts": max_attempts},
    )


def allocate_invoice_number(project_id):
    """
    Next invoice number for a project: INV-{project_id}-{nnn}.

    Numbers come from the same forward-only counter, so an invoice removed
    by rollback never has its number reissued.
    """
    from apps.payments.models import Invoice

    prefix = f"invoice:{project_id}"
    counter = _counter_for(prefix)
    sequence = counter.next_sequence
    while True:
        candidate = f"INV-{project_id}-{sequence:03d}"
        if not Invoice.objects.filter(invoice_number=candidate).exists():
            break
        sequence += 1
    _advance(prefix, sequence + 1)
    return candidate
