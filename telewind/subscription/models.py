from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple


@dataclass(frozen=True)
class Subscription:
    id: int
    user_id: int
    created_at: int


class ActiveSubscriptions:
    """
    Snapshot of the subscriptions table, ordered by id.

    The rows are read in a single transaction when the snapshot is taken;
    records are built lazily while iterating. Iterating again walks the
    same snapshot, so deletes that happen meanwhile are not observed.
    """

    def __init__(self, rows: Sequence[Tuple[int, int, int]]):
        self._rows: List[Tuple[int, int, int]] = list(rows)

    def __iter__(self) -> Iterator[Subscription]:
        for sub_id, user_id, created_at in self._rows:
            yield Subscription(id=sub_id, user_id=user_id, created_at=created_at)

    def __len__(self) -> int:
        return len(self._rows)

    def __bool__(self) -> bool:
        return bool(self._rows)

    def __repr__(self) -> str:
        return f"<ActiveSubscriptions n={len(self._rows)}>"
