"""Order and ledger status transitions enforced during settlement."""

ORDER_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

TRANSACTION_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"success", "failed"},
    # A charge the gateway reported failed can still succeed on a later attempt.
    "failed": {"success"},
    "success": set(),
}


def can_transition(current: str, new: str, transitions: dict[str, set[str]]) -> bool:
    return new in transitions.get(current, set())
