import hashlib
import math
import re
import time
from typing import Any, NamedTuple, TypeVar

T = TypeVar("T")

# Mersenne prime used by the upstream catalog's own seeded ordering
RANDOM_MODULUS = 2147483647
SEED_SPACE = 100_000_000

_RANDOM_SORT = re.compile(r"^random(?:_(?P<seed>.+))?$", re.IGNORECASE)


class SeededRandom:
    """
    Deterministic linear congruential generator.

    The same seed always yields the same sequence, which keeps shuffles stable
    across paginated requests.
    """

    def __init__(self, seed: int):
        self.seed = int(seed) & 0x7FFFFFFF

    def next(self) -> float:
        self.seed = (self.seed * 1103515245 + 12345) & 0x7FFFFFFF
        return self.seed / 0x7FFFFFFF

    def next_int(self, upper: int) -> int:
        """Integer in ``[0, upper)``."""
        return min(math.floor(self.next() * upper), upper - 1)

    def shuffle(self, items: list[T]) -> list[T]:
        """Fisher-Yates shuffle into a new list."""
        result = list(items)
        for i in range(len(result) - 1, 0, -1):
            j = self.next_int(i + 1)
            result[i], result[j] = result[j], result[i]
        return result


def stable_int(value: Any) -> int:
    """Stable non-negative integer for any identifier (numeric ids map to themselves)."""
    text = str(value)
    if text.isdigit():
        return int(text)
    return int(hashlib.md5(text.encode()).hexdigest()[:12], 16)


def user_seed(user_id: str) -> int:
    return stable_int(user_id) % SEED_SPACE


def random_sort_key(entity_id: str, seed: int) -> int:
    """
    Position of an entity in the permutation selected by ``seed``.

    Depends only on (id, seed), so the ordering of any subset is consistent
    with the ordering of the whole set.
    """
    k = stable_int(entity_id) + seed
    km = k % RANDOM_MODULUS
    return ((km * km % RANDOM_MODULUS) * 52959209 % RANDOM_MODULUS + (k * 1047483763 % RANDOM_MODULUS)) % RANDOM_MODULUS


class SortSpec(NamedTuple):
    field: str | None
    descending: bool = False
    seed: int | None = None

    @property
    def is_random(self) -> bool:
        return self.seed is not None


def parse_sort(sort: str | None, direction: str = "ASC", user_id: str | None = None, now: float | None = None) -> SortSpec:
    """
    Parse the sort grammar: a field name, ``random`` or ``random_<seed>``.

    ``random`` without a seed mixes the user with the current time, so it is
    only stable within a single request. A non-numeric seed is hashed.
    """
    descending = str(direction).upper() == "DESC"
    if not sort:
        return SortSpec(None, descending)
    match = _RANDOM_SORT.match(sort.strip())
    if not match:
        return SortSpec(sort.strip(), descending)
    raw_seed = match.group("seed")
    if raw_seed is None:
        millis = int((now if now is not None else time.time()) * 1000)
        seed = (user_seed(user_id or "") + millis) % SEED_SPACE
    else:
        seed = stable_int(raw_seed.strip()) % SEED_SPACE
    return SortSpec("random", descending, seed)
