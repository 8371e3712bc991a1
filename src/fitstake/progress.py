from dataclasses import dataclass
from typing import Iterable


@dataclass
class Progress:
    total_steps: int
    progress: float
    completed: bool


def calculate_progress(step_counts: Iterable[int], goal_value: float) -> Progress:
    """Aggregate normalized per-day step counts against a challenge goal."""
    total_steps = sum(step_counts)
    if goal_value <= 0:
        return Progress(total_steps=total_steps, progress=1.0, completed=True)
    return Progress(
        total_steps=total_steps,
        progress=min(1.0, total_steps / goal_value),
        completed=total_steps >= goal_value,
    )
