from __future__ import annotations

from typing import Iterable, Protocol


class ResponderStore(Protocol):
    async def count_participant_claims(self, participant_id: int) -> int: ...

    async def set_participant_responded(self, participant_id: int, responded: bool) -> None: ...


async def refresh_responded(store: ResponderStore, participant_id: int) -> bool:
    """A participant has responded while they hold at least one claim."""
    responded = await store.count_participant_claims(participant_id) > 0
    await store.set_participant_responded(participant_id, responded)
    return responded


async def refresh_many(store: ResponderStore, participant_ids: Iterable[int]) -> dict[int, bool]:
    result: dict[int, bool] = {}
    for participant_id in dict.fromkeys(participant_ids):
        result[participant_id] = await refresh_responded(store, participant_id)
    return result
