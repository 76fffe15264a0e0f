from __future__ import annotations

import itertools
import math
from collections.abc import Iterator
from dataclasses import dataclass

from ..errors import ConfigurationError
from ..graph.model import AttachmentPoint, BBType, Graph
from .space import FragmentSpace


@dataclass(frozen=True)
class FragmentChoice:
    """What goes on one open AP: a block's AP, or nothing (``BBType.NONE``)."""

    bb_type: BBType
    bb_id: int = -1
    ap_index: int = -1
    sym_key: tuple[int, int] | None = None

    @property
    def is_empty(self) -> bool:
        return self.bb_type in (BBType.NONE, BBType.UNDEFINED)


EMPTY_CHOICE = FragmentChoice(BBType.NONE)

# (source vertex ID, source AP index) -> choice, in enumeration order
Combination = dict[tuple[int, int], FragmentChoice]


class _UnionFind:
    def __init__(self, n: int) -> None:
        self.parent = list(range(n))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


class CombinationEnumerator:
    """Lazy, restartable enumeration of the ways to decorate a root graph's open APs.

    Open APs are the free APs of vertices added at ``level - 1``. Symmetric APs form
    groups; a group's choices are either identical (``enforce_symmetry``) or emitted
    once per multiset, so symmetry-related combinations are produced once. Pointers
    are emitted in lexicographic order and ``start`` resumes right after a pointer.
    """

    def __init__(
        self,
        root: Graph,
        space: FragmentSpace,
        level: int,
        enforce_symmetry: bool | None = None,
        start: list[int] | None = None,
    ) -> None:
        self.root = root
        self.space = space
        self.level = level
        self.enforce_symmetry = (
            space.enforce_symmetry if enforce_symmetry is None else enforce_symmetry
        )
        self.start = list(start) if start is not None else None
        self.groups = self._symmetry_groups(self._open_aps())
        self.open_aps: list[AttachmentPoint] = [ap for g in self.groups for ap in g]
        self.candidates = [self._candidates_for(g[0]) for g in self.groups]

    def _open_aps(self) -> list[AttachmentPoint]:
        aps = [
            ap
            for v in self.root.vertices
            if v.level == self.level - 1
            for ap in v.free_aps()
        ]
        aps.sort(key=lambda ap: (ap.vertex_id, ap.index))
        return aps

    def _symmetry_groups(self, aps: list[AttachmentPoint]) -> list[list[AttachmentPoint]]:
        uf = _UnionFind(len(aps))
        pos = {(ap.vertex_id, ap.index): i for i, ap in enumerate(aps)}
        for i, a in enumerate(aps):
            ss = self.root.symmetric_set_of(a.vertex_id)
            for j in range(i + 1, len(aps)):
                b = aps[j]
                if a.ap_class != b.ap_class:
                    continue
                if ss is not None and b.vertex_id in ss and a.index == b.index:
                    uf.union(i, j)
            block = a.owner.block
            for group in block.symmetric_aps if block is not None else ():
                if a.index not in group:
                    continue
                for k in group:
                    j = pos.get((a.vertex_id, k))
                    if j is not None and aps[j].ap_class == a.ap_class:
                        uf.union(i, j)
        grouped: dict[int, list[AttachmentPoint]] = {}
        for i, ap in enumerate(aps):
            grouped.setdefault(uf.find(i), []).append(ap)
        return [grouped[k] for k in sorted(grouped)]

    def _candidates_for(self, ap: AttachmentPoint) -> list[FragmentChoice]:
        targets = [FragmentChoice(t, b, i) for t, b, i in self.space.compatible_targets(ap.ap_class)]
        if self.space.is_forbidden_end(ap.ap_class):
            if not targets:
                raise ConfigurationError(
                    f"AP class {ap.ap_class} must be used but no building block is compatible"
                )
            return targets
        return [EMPTY_CHOICE, *targets]

    def _group_options(self, idx: int) -> Iterator[tuple[int, ...]]:
        size = len(self.groups[idx])
        n = len(self.candidates[idx])
        if self.enforce_symmetry:
            return ((i,) * size for i in range(n))
        return itertools.combinations_with_replacement(range(n), size)

    def size(self) -> int:
        """Number of pointers (including the all-empty one, which is never emitted)."""
        total = 1
        for g, cands in zip(self.groups, self.candidates, strict=True):
            n = len(cands)
            total *= n if self.enforce_symmetry else math.comb(n + len(g) - 1, len(g))
        return total if self.groups else 0

    def __iter__(self) -> Iterator[tuple[list[int], Combination]]:
        if not self.groups:
            return
        options = [self._group_options(i) for i in range(len(self.groups))]
        for parts in itertools.product(*options):
            pointer = [i for part in parts for i in part]
            if self.start is not None and pointer <= self.start:
                continue
            combination = self.combination_for(pointer)
            if all(c.is_empty for c in combination.values()):
                continue
            yield pointer, combination

    def combination_for(self, pointer: list[int]) -> Combination:
        if len(pointer) != len(self.open_aps):
            raise ConfigurationError(
                f"Pointer {pointer} does not match {len(self.open_aps)} open APs"
            )
        combination: Combination = {}
        k = 0
        for gi, group in enumerate(self.groups):
            for ap in group:
                ci = pointer[k]
                k += 1
                c = self.candidates[gi][ci]
                if not c.is_empty and len(group) > 1:
                    c = FragmentChoice(c.bb_type, c.bb_id, c.ap_index, sym_key=(gi, ci))
                combination[(ap.vertex_id, ap.index)] = c
        return combination
