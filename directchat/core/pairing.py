from uuid import UUID


def canonical_pair(user_a: UUID, user_b: UUID) -> tuple[UUID, UUID]:
    """Orders a participant pair so (A, B) and (B, A) map to the same tuple."""
    if str(user_a) <= str(user_b):
        return user_a, user_b
    return user_b, user_a


def pair_key(user_a: UUID, user_b: UUID) -> str:
    """Order-independent identifier for a participant pair."""
    low, high = canonical_pair(user_a, user_b)
    return f"{low}:{high}"


def counterpart_of(user_id: UUID, participant_a: UUID, participant_b: UUID) -> UUID:
    return participant_b if participant_a == user_id else participant_a
