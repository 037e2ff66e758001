"""Decides whether simultaneous transitions are alerted together."""

from enum import Enum
from typing import Sequence

from .models import CheckOutcome


class GroupingDecision(str, Enum):
    GROUPED = "grouped"
    INDIVIDUAL = "individual"


class OutageGrouper:
    """Groups transitions from one check-all pass into a single alert when two or more coincide."""

    def __init__(self, threshold: int = 2) -> None:
        self.threshold = threshold

    def decide(self, transitioned: Sequence[CheckOutcome]) -> GroupingDecision:
        if len(transitioned) >= self.threshold:
            return GroupingDecision.GROUPED
        return GroupingDecision.INDIVIDUAL
