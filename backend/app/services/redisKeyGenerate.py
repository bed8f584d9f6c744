# Redis key helpers for the capture pipeline (drafts live under one key per operator).
DRAFT_KEY_PREFIX = "capture:draft"


def generate_draft_key(org_id, user_id) -> str:
    """
    Draft key for one operator inside one organisation.

    An operator has at most one capture draft at a time, the same way the
    capture app kept a single local draft per browser profile.
    """
    return f"{DRAFT_KEY_PREFIX}:{org_id or 'default'}:{user_id}"
