"""
Conflict index: interval trees over placed slots.

Each tree is a binary search tree ordered by start time, AVL-balanced, where
every node caches the maximum end time of its subtree. Overlap searches can
then skip whole subtrees that end before the query starts.

The index keeps one tree over all slots, one per station and one per player,
so the station and player checks of a placement only look at relevant slots.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Optional

from stationplan.schedule import Slot


@dataclass(slots=True)
class _Node:
    start: datetime
    end: datetime
    slot: Slot
    max_end: datetime
    height: int = 1
    left: Optional["_Node"] = None
    right: Optional["_Node"] = None

    def update(self):
        """Recompute cached height and max end after a mutation."""
        self.max_end = self.end
        self.height = 1
        for child in (self.left, self.right):
            if child is not None:
                if child.max_end > self.max_end:
                    self.max_end = child.max_end
                if child.height + 1 > self.height:
                    self.height = child.height + 1


def _height(node: Optional[_Node]) -> int:
    return node.height if node is not None else 0


class IntervalTree:
    """Augmented interval tree of slots keyed by their ``[start, end)`` span."""

    def __init__(self):
        self._root: Optional[_Node] = None
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def insert(self, slot: Slot):
        self._root = self._insert(self._root, slot)
        self._size += 1

    def query(self, start: datetime, end: datetime) -> list[Slot]:
        """All slots whose span overlaps ``[start, end)``."""
        found: list[Slot] = []
        if end > start:
            self._search(self._root, start, end, found)
        return found

    def __iter__(self) -> Iterator[Slot]:
        yield from self._iter_nodes(self._root)

    # --- Internal helpers ---

    def _insert(self, node: Optional[_Node], slot: Slot) -> _Node:
        if node is None:
            return _Node(start=slot.start, end=slot.end, slot=slot, max_end=slot.end)
        if slot.start < node.start:
            node.left = self._insert(node.left, slot)
        else:
            node.right = self._insert(node.right, slot)
        node.update()
        return self._rebalance(node)

    def _search(self, node: Optional[_Node], start: datetime, end: datetime, found: list[Slot]):
        if node is None:
            return
        if node.start < end and node.end > start:
            found.append(node.slot)
        if node.left is not None and node.left.max_end > start:
            self._search(node.left, start, end, found)
        if node.right is not None and node.start < end:
            self._search(node.right, start, end, found)

    def _rebalance(self, node: _Node) -> _Node:
        balance = _height(node.left) - _height(node.right)
        if balance > 1:
            if _height(node.left.left) < _height(node.left.right):
                node.left = self._rotate_left(node.left)
            return self._rotate_right(node)
        if balance < -1:
            if _height(node.right.right) < _height(node.right.left):
                node.right = self._rotate_right(node.right)
            return self._rotate_left(node)
        return node

    def _rotate_left(self, node: _Node) -> _Node:
        new_root = node.right
        node.right = new_root.left
        new_root.left = node
        node.update()
        new_root.update()
        return new_root

    def _rotate_right(self, node: _Node) -> _Node:
        new_root = node.left
        node.left = new_root.right
        new_root.right = node
        node.update()
        new_root.update()
        return new_root

    def _iter_nodes(self, node: Optional[_Node]) -> Iterator[Slot]:
        if node is None:
            return
        yield from self._iter_nodes(node.left)
        yield node.slot
        yield from self._iter_nodes(node.right)


class ConflictIndex:
    """
    Index of placed slots answering overlap queries.

    Placeholder slots (no match) are never indexed. Removal rebuilds the index
    from the remaining slots rather than deleting tree nodes; removals only
    happen on backtrack, never when a placement is accepted.
    """

    def __init__(self, slots: Iterable[Slot] = ()):
        self._slots: list[Slot] = []
        self._all = IntervalTree()
        self._by_station: dict[str, IntervalTree] = {}
        self._by_player: dict[str, IntervalTree] = {}
        for slot in slots:
            self.insert(slot)

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def slots(self) -> list[Slot]:
        return list(self._slots)

    def insert(self, slot: Slot):
        if slot.is_placeholder:
            return
        self._slots.append(slot)
        self._all.insert(slot)
        self._by_station.setdefault(slot.station_id, IntervalTree()).insert(slot)
        for player_id in slot.player_ids:
            self._by_player.setdefault(player_id, IntervalTree()).insert(slot)

    def remove(self, slot: Slot):
        """Drop a slot by rebuilding the index without it."""
        remaining = [s for s in self._slots if s is not slot]
        self.rebuild(remaining)

    def rebuild(self, slots: Iterable[Slot]):
        """Replace the indexed slots wholesale (e.g. after slot times changed)."""
        self._slots = []
        self._all = IntervalTree()
        self._by_station = {}
        self._by_player = {}
        for slot in slots:
            self.insert(slot)

    def query(self, start: datetime, end: datetime) -> list[Slot]:
        """Every indexed slot overlapping ``[start, end)``."""
        return self._all.query(start, end)

    def query_station(self, station_id: str, start: datetime, end: datetime) -> list[Slot]:
        tree = self._by_station.get(station_id)
        return tree.query(start, end) if tree is not None else []

    def query_players(self, player_ids: Iterable[str], start: datetime, end: datetime) -> list[Slot]:
        """Slots overlapping ``[start, end)`` that share at least one of the players."""
        found: dict[int, Slot] = {}
        for player_id in player_ids:
            tree = self._by_player.get(player_id)
            if tree is None:
                continue
            for slot in tree.query(start, end):
                found.setdefault(id(slot), slot)
        return list(found.values())
