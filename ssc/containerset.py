from __future__ import annotations

from typing import Iterable, Iterator


class ContainerSet:
    """Immutable set of container names that remembers insertion order.

    Order only matters for logging and for the order in which containers are
    signalled; equality ignores it.
    """

    __slots__ = ("_names", "_members")

    def __init__(self, names: Iterable[str] = ()):
        ordered: dict[str, None] = dict.fromkeys(names)
        self._names: tuple[str, ...] = tuple(ordered)
        self._members: frozenset[str] = frozenset(ordered)

    @classmethod
    def parse(cls, raw: str | None, keep_empty: bool = False) -> "ContainerSet":
        """Parse a comma-separated annotation value.

        With keep_empty the value is split verbatim, so "" yields a single
        empty name. Otherwise segments are stripped and empty ones dropped.
        """
        if raw is None:
            return cls()
        if keep_empty:
            return cls(raw.split(","))
        return cls(s.strip() for s in raw.split(",") if s.strip())

    def union(self, other: "ContainerSet") -> "ContainerSet":
        return ContainerSet((*self._names, *other._names))

    __or__ = union

    def contains_all(self, other: "ContainerSet") -> bool:
        return self._members >= other._members

    def __contains__(self, name: object) -> bool:
        return name in self._members

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContainerSet):
            return NotImplemented
        return self._members == other._members

    def __hash__(self) -> int:
        return hash(self._members)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __bool__(self) -> bool:
        return bool(self._names)

    def to_tuple(self) -> tuple[str, ...]:
        return self._names

    def __repr__(self) -> str:
        return f"ContainerSet({list(self._names)!r})"

    def __str__(self) -> str:
        return "{" + ", ".join(self._names) + "}"
