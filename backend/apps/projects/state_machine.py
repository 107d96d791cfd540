"""
State machine enforcement for Task and Project.

Raises InvalidStateError for disallowed transitions.
"""

from core.exceptions import InvalidStateError

# Approved -> InReview is reachable only through the rollback tool.
TASK_TRANSITIONS = {
    "Ongoing": ["InReview"],
    "InReview": ["Approved", "Rejected"],
    "Rejected": ["Ongoing", "InReview"],
    "Approved": ["InReview"],
}

# Completed -> Ongoing is reachable only through the rollback tool.
PROJECT_TRANSITIONS = {
    "Ongoing": ["Paused", "Completed"],
    "Paused": ["Ongoing", "Completed"],
    "Completed": ["Ongoing"],
}

_TABLES = {
    "Task": TASK_TRANSITIONS,
    "Project": PROJECT_TRANSITIONS,
}


def validate_transition(entity_type, current_status, target_status):
    """
    Validate a state transition.

    Args:
        entity_type: 'Task' or 'Project'
        current_status: Current state
        target_status: Target state

    Returns:
        bool: True if transition is allowed

    Raises:
        InvalidStateError: If transition is disallowed
    """
    transitions = _TABLES.get(entity_type)
    if transitions is None:
        raise ValueError(f"Unknown entity_type: {entity_type}")

    if current_status not in transitions:
        raise InvalidStateError(
            f"Invalid current status: {current_status}",
            {"entity_type": entity_type, "current_status": current_status},
        )

    allowed_targets = transitions[current_status]
    if target_status not in allowed_targets:
        raise InvalidStateError(
            (
                "Invalid transition: "
                f"{entity_type} cannot transition from {current_status} to "
                f"{target_status}"
            ),
            {
                "entity_type": entity_type,
                "current_status": current_status,
                "target_status": target_status,
                "allowed_transitions": allowed_targets,
            },
        )

    return True
