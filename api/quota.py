MAX_GUEST_MESSAGES = 5


def remaining_messages(count: int, max_messages: int = MAX_GUEST_MESSAGES) -> int:
    return max(0, int(max_messages) - int(count or 0))


def is_exhausted(count: int, max_messages: int = MAX_GUEST_MESSAGES) -> bool:
    return int(count or 0) >= int(max_messages)


def guest_usage(repo, guest_id: str, max_messages: int = MAX_GUEST_MESSAGES) -> dict:
    count = repo.get_guest_message_count(guest_id)
    return {
        "count": count,
        "remaining": remaining_messages(count, max_messages),
        "max": int(max_messages),
    }
