"""
Run State Machine.

    NEW -> EXTRACTED -> MATCHED -> {AUTO_APPROVED | PENDING_REVIEW | UNMATCHED}

Any non-terminal state may also be aborted straight to PENDING_REVIEW.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Tuple

from payproof.utils.exceptions import InvalidTransitionError
from payproof.utils.helpers import generate_id, utc_now_iso
from payproof.utils.logger import get_logger

logger = get_logger(__name__)


class RunState(str, Enum):
    NEW = "new"
    EXTRACTED = "extracted"
    MATCHED = "matched"
    AUTO_APPROVED = "auto_approved"
    PENDING_REVIEW = "pending_review"
    UNMATCHED = "unmatched"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[RunState] = frozenset({
    RunState.AUTO_APPROVED,
    RunState.PENDING_REVIEW,
    RunState.UNMATCHED,
})

ALLOWED_TRANSITIONS: Dict[RunState, FrozenSet[RunState]] = {
    RunState.NEW: frozenset({RunState.EXTRACTED}),
    RunState.EXTRACTED: frozenset({RunState.MATCHED}),
    RunState.MATCHED: TERMINAL_STATES,
}


@dataclass
class DecisionRun:
    """
    One pass of a payment proof through the pipeline.

    Attributes:
        content_hash: Hash of the uploaded bytes
        run_id: Unique run identifier
        state: Current state
        history: (state, timestamp) pairs, oldest first
    """
    content_hash: str
    run_id: str = field(default_factory=lambda: generate_id("run"))
    state: RunState = RunState.NEW
    history: List[Tuple[RunState, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.state, utc_now_iso()))

    def transition(self, target: RunState) -> None:
        """
        Move to a new state.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current state.
        """
        if target not in ALLOWED_TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransitionError(self.state.value, target.value)
        logger.debug(f"Run {self.run_id}: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append((target, utc_now_iso()))

    def abort(self) -> None:
        """Send a non-terminal run straight to PENDING_REVIEW."""
        if self.state.is_terminal:
            raise InvalidTransitionError(self.state.value, RunState.PENDING_REVIEW.value)
        logger.debug(f"Run {self.run_id}: aborted from {self.state.value}")
        self.state = RunState.PENDING_REVIEW
        self.history.append((self.state, utc_now_iso()))
