"""Moderation state machine.

Entries are created ``pending``. A moderator moves a pending entry to
``approved`` or ``rejected`` exactly once; there is no way back. Only
approved entries are visible to ordinary listings.

This module holds no storage state. The index store applies a transition
with a conditional update so that the check performed here and the write
happen atomically.
"""

from __future__ import annotations

from ccindex.models import ModerationConfig, ModerationState, ResubmissionPolicy
from ccindex.utils.exceptions import (
    InvalidTransitionError,
    ReasonRequiredError,
    ResubmissionNotAllowedError,
)

_TRANSITIONS: dict[ModerationState, frozenset[ModerationState]] = {
    ModerationState.PENDING: frozenset(
        {ModerationState.APPROVED, ModerationState.REJECTED}
    ),
    ModerationState.APPROVED: frozenset(),
    ModerationState.REJECTED: frozenset(),
}

VISIBLE_STATES = frozenset({ModerationState.APPROVED})


class ModerationStateMachine:
    """Transition rules for index entries."""

    def __init__(self, config: ModerationConfig | None = None):
        """Initialize the state machine.

        Args:
            config: Moderation policy (reason requirement, re-upload policy)

        """
        self.config = config or ModerationConfig()

    def allowed_targets(self, state: ModerationState) -> frozenset[ModerationState]:
        """States reachable from ``state``."""
        return _TRANSITIONS[ModerationState(state)]

    def is_visible(self, state: ModerationState) -> bool:
        """Whether entries in ``state`` appear in ordinary listings."""
        return ModerationState(state) in VISIBLE_STATES

    def check_transition(
        self,
        current: ModerationState,
        target: ModerationState,
        reason: str | None = None,
        entry_id: int | None = None,
    ) -> str | None:
        """Validate a transition request.

        Returns:
            The normalized reason (stripped, ``None`` when blank)

        Raises:
            InvalidTransitionError: ``target`` is not reachable from ``current``
            ReasonRequiredError: Rejection without a reason while reasons are required

        """
        current = ModerationState(current)
        target = ModerationState(target)
        if target not in _TRANSITIONS[current]:
            raise InvalidTransitionError(entry_id, current.value, target.value)

        reason = reason.strip() if reason else None
        reason = reason or None
        if (
            target == ModerationState.REJECTED
            and reason is None
            and self.config.require_reject_reason
        ):
            msg = "A reason is required to reject an entry"
            raise ReasonRequiredError(msg, {"entry_id": entry_id})
        return reason

    def check_resubmission(
        self,
        previous_state: ModerationState,
        superseded: bool = False,
        entry_id: int | None = None,
    ) -> None:
        """Validate that a rejected entry may be replaced by a re-upload.

        Raises:
            ResubmissionNotAllowedError: Policy forbids re-uploads, the previous
                entry is not rejected, or it was already replaced

        """
        details = {"entry_id": entry_id}
        if self.config.resubmission_policy == ResubmissionPolicy.FORBID:
            msg = "Re-uploading rejected torrents is disabled"
            raise ResubmissionNotAllowedError(msg, details)
        if ModerationState(previous_state) != ModerationState.REJECTED:
            msg = "Only rejected entries can be re-uploaded"
            raise ResubmissionNotAllowedError(msg, details)
        if superseded:
            msg = "Entry was already re-uploaded"
            raise ResubmissionNotAllowedError(msg, details)
