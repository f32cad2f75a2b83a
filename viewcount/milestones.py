"""
Milestone policies.

A policy decides which view count a video is working towards next and
whether its current count is close enough to that threshold to be worth an
early notification. Policies are pure and deterministic; the sync use case
only ever talks to the MilestonePolicy protocol.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MilestonePolicy(Protocol):
    def next_milestone(self, value: int) -> int:
        """Threshold a video at ``value`` views is heading for.

        Always strictly greater than ``value`` and non-decreasing in it.
        """
        ...

    def is_approaching(self, value: int) -> bool:
        """True when ``value`` sits within the proximity window below
        ``next_milestone(value)``."""
        ...


class FixedStepMilestonePolicy:
    """
    Milestones at every multiple of ``step``.

    A value is approaching when it is at most ``approach_window`` views short
    of the next multiple.
    """

    def __init__(self, step: int, approach_window: int = 0) -> None:
        if step <= 0:
            raise ValueError("step must be positive")
        if approach_window < 0 or approach_window >= step:
            raise ValueError("approach_window must be in [0, step)")
        self.step = step
        self.approach_window = approach_window

    def next_milestone(self, value: int) -> int:
        if value < 0:
            raise ValueError("value must be non-negative")
        return (value // self.step + 1) * self.step

    def is_approaching(self, value: int) -> bool:
        return self.next_milestone(value) - value <= self.approach_window

    def __repr__(self) -> str:
        return (
            f"FixedStepMilestonePolicy(step={self.step}, "
            f"approach_window={self.approach_window})"
        )


class RoundNumberMilestonePolicy:
    """
    Milestones at round numbers of the value's own magnitude.

    The step is the power of ten of the leading digit (never below
    ``minimum_step``), so 950 heads for 1000, 1000 for 2000 and 1_234_567
    for 2_000_000. A value is approaching when it is within
    ``approach_ratio`` of the milestone.
    """

    def __init__(
        self, approach_ratio: float = 0.05, minimum_step: int = 1
    ) -> None:
        if not 0 <= approach_ratio < 1:
            raise ValueError("approach_ratio must be in [0, 1)")
        if minimum_step <= 0:
            raise ValueError("minimum_step must be positive")
        self.approach_ratio = approach_ratio
        self.minimum_step = minimum_step

    def _step(self, value: int) -> int:
        magnitude = 10 ** (len(str(value)) - 1) if value > 0 else 1
        return max(magnitude, self.minimum_step)

    def next_milestone(self, value: int) -> int:
        if value < 0:
            raise ValueError("value must be non-negative")
        step = self._step(value)
        return (value // step + 1) * step

    def is_approaching(self, value: int) -> bool:
        milestone = self.next_milestone(value)
        return milestone - value <= self.approach_ratio * milestone

    def __repr__(self) -> str:
        return (
            "RoundNumberMilestonePolicy("
            f"approach_ratio={self.approach_ratio}, "
            f"minimum_step={self.minimum_step})"
        )
