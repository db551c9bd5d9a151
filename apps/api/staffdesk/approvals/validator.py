"""Pure rank checks and rank arithmetic for approval chains.

Nothing here touches storage, so every rule can be exercised with plain
values. The store applies the results inside its own transaction.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass
from typing import NamedTuple, Protocol

from staffdesk.approvals.errors import NoApproverAssigned, RankCountMismatch, RankSequenceGap


class LevelInput(Protocol):
    rank: int
    approver_ids: Sequence[str]


@dataclass(frozen=True, slots=True)
class LevelDraft:
    rank: int
    approver_ids: tuple[str, ...]

    @property
    def real_approvers(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(item.strip() for item in self.approver_ids if item and item.strip()))


class LevelSlot(NamedTuple):
    key: Hashable
    rank: int


def validate_chain(levels: Iterable[LevelInput]) -> list[LevelDraft]:
    drafts = [LevelDraft(rank=level.rank, approver_ids=tuple(level.approver_ids)) for level in levels]
    ranks = sorted({draft.rank for draft in drafts})

    if len(ranks) != len(drafts):
        duplicates = sorted({draft.rank for draft in drafts if sum(1 for other in drafts if other.rank == draft.rank) > 1})
        raise RankCountMismatch(
            f"{len(drafts)} levels submitted but only {len(ranks)} distinct ranks",
            details={"duplicate_ranks": duplicates},
        )

    expected = list(range(1, len(drafts) + 1))
    if ranks != expected:
        raise RankSequenceGap(
            "level ranks must run from 1 without gaps",
            details={"ranks": ranks, "expected": expected},
        )

    if not any(draft.real_approvers for draft in drafts):
        raise NoApproverAssigned("at least one level must have an approver")

    return sorted(drafts, key=lambda draft: draft.rank)


def renumber(levels: Sequence[LevelSlot], removed_rank: int) -> list[LevelSlot]:
    """Drop ``removed_rank`` and close the gap, keeping relative order."""

    ordered = sorted(levels, key=lambda slot: slot.rank)
    if removed_rank not in {slot.rank for slot in ordered}:
        raise RankSequenceGap(f"rank {removed_rank} is not part of the chain", details={"rank": removed_rank})
    survivors = [slot for slot in ordered if slot.rank != removed_rank]
    return [LevelSlot(key=slot.key, rank=index) for index, slot in enumerate(survivors, start=1)]


def shift_for_insert(levels: Sequence[LevelSlot], position: int) -> list[LevelSlot]:
    """Ranks after opening a hole at ``position``; the new level takes that rank."""

    ordered = sorted(levels, key=lambda slot: slot.rank)
    if position < 1 or position > len(ordered) + 1:
        raise RankSequenceGap(
            f"position {position} is outside 1..{len(ordered) + 1}",
            details={"position": position, "level_count": len(ordered)},
        )
    return [
        LevelSlot(key=slot.key, rank=slot.rank + 1 if slot.rank >= position else slot.rank)
        for slot in ordered
    ]
