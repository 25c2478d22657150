"""Span-conflict resolution shared by detection, tokenization and merging.

``resolve_overlaps`` is a greedy interval heuristic, not an optimal
weighted-interval schedule.  Candidates are visited left to right and a
later candidate only displaces earlier ones when it beats all of them,
so for a chain A-B-C (A overlaps B, B overlaps C, A and C disjoint) the
outcome depends on visiting order.
"""

from __future__ import annotations
from typing import Iterable

from .types import Entity


def spans_overlap(a: Entity, b: Entity) -> bool:
    return not (a.end <= b.start or b.end <= a.start)


def resolve_overlaps(entities: Iterable[Entity]) -> list[Entity]:
    """Return a pairwise non-overlapping subset, preferring higher scores.

    Ties keep the entity accepted first.  Output is sorted by start.
    """
    accepted: list[Entity] = []
    for candidate in sorted(entities, key=lambda e: e.start):
        clashing = [a for a in accepted if spans_overlap(candidate, a)]
        if not clashing:
            accepted.append(candidate)
        elif all(candidate.score > a.score for a in clashing):
            accepted = [a for a in accepted if a not in clashing]
            accepted.append(candidate)
    return sorted(accepted, key=lambda e: e.start)


def merge_with_tolerance(
    primary: list[Entity],
    secondary: list[Entity],
    *,
    tolerance: int = 2,
) -> list[Entity]:
    """Keep every primary entity, add secondary ones clear of all primaries.

    *tolerance* absorbs boundary fuzz between detectors (e.g. one includes
    a trailing period, the other does not).
    """
    merged = list(primary)
    for entity in secondary:
        if not any(_near(entity, p, tolerance) for p in primary):
            merged.append(entity)
    return sorted(merged, key=lambda e: e.start)


def _near(a: Entity, b: Entity, tolerance: int) -> bool:
    return not (a.end + tolerance < b.start or b.end + tolerance < a.start)
