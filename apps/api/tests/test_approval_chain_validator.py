from __future__ import annotations

import pytest

from staffdesk.approvals.errors import NoApproverAssigned, RankCountMismatch, RankSequenceGap
from staffdesk.approvals.schemas import ApprovalLevelInput
from staffdesk.approvals.validator import LevelDraft, LevelSlot, renumber, shift_for_insert, validate_chain


def _levels(*specs: tuple[int, list[str]]) -> list[ApprovalLevelInput]:
    return [ApprovalLevelInput(rank=rank, approver_ids=approvers) for rank, approvers in specs]


def test_sequential_chain_is_returned_sorted_by_rank() -> None:
    drafts = validate_chain(_levels((2, ["u2"]), (1, ["u1"]), (3, ["u3"])))

    assert [draft.rank for draft in drafts] == [1, 2, 3]
    assert drafts[0].approver_ids == ("u1",)


def test_duplicate_rank_raises_rank_count_mismatch() -> None:
    with pytest.raises(RankCountMismatch) as exc_info:
        validate_chain(_levels((1, ["u1"]), (1, ["u2"])))

    assert exc_info.value.details == {"duplicate_ranks": [1]}


def test_gap_in_ranks_raises_rank_sequence_gap() -> None:
    with pytest.raises(RankSequenceGap) as exc_info:
        validate_chain(_levels((1, ["u1"]), (3, ["u3"])))

    assert exc_info.value.details["ranks"] == [1, 3]
    assert exc_info.value.details["expected"] == [1, 2]


def test_chain_not_starting_at_one_is_a_gap() -> None:
    with pytest.raises(RankSequenceGap):
        validate_chain(_levels((2, ["u1"]), (3, ["u2"])))


def test_chain_with_no_real_approver_is_rejected() -> None:
    with pytest.raises(NoApproverAssigned):
        validate_chain(_levels((1, []), (2, ["  ", ""])))


def test_placeholder_level_is_allowed_when_another_level_has_approvers() -> None:
    drafts = validate_chain(_levels((1, []), (2, ["u2"])))

    assert drafts[0].real_approvers == ()
    assert drafts[1].real_approvers == ("u2",)


def test_real_approvers_strip_blanks_and_duplicates() -> None:
    draft = LevelDraft(rank=1, approver_ids=(" u1 ", "u2", "u1", ""))

    assert draft.real_approvers == ("u1", "u2")


def test_renumber_closes_gap_left_by_removed_rank() -> None:
    slots = [LevelSlot("a", 1), LevelSlot("b", 2), LevelSlot("c", 3)]

    result = renumber(slots, 2)

    assert result == [LevelSlot("a", 1), LevelSlot("c", 2)]


def test_renumber_keeps_relative_order_for_unsorted_input() -> None:
    slots = [LevelSlot("c", 3), LevelSlot("a", 1), LevelSlot("b", 2)]

    assert renumber(slots, 1) == [LevelSlot("b", 1), LevelSlot("c", 2)]


def test_renumber_unknown_rank_fails() -> None:
    with pytest.raises(RankSequenceGap):
        renumber([LevelSlot("a", 1)], 4)


def test_shift_for_insert_opens_hole_at_position() -> None:
    slots = [LevelSlot("a", 1), LevelSlot("b", 2)]

    assert shift_for_insert(slots, 1) == [LevelSlot("a", 2), LevelSlot("b", 3)]
    assert shift_for_insert(slots, 2) == [LevelSlot("a", 1), LevelSlot("b", 3)]
    assert shift_for_insert(slots, 3) == [LevelSlot("a", 1), LevelSlot("b", 2)]


@pytest.mark.parametrize("position", [0, 4])
def test_shift_for_insert_rejects_positions_outside_chain(position: int) -> None:
    with pytest.raises(RankSequenceGap):
        shift_for_insert([LevelSlot("a", 1), LevelSlot("b", 2)], position)
