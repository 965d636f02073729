from __future__ import annotations

from dataclasses import dataclass

from tinywords.scheduler.dates import add_days


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    longest_streak: int = 0
    last_completed_date: str | None = None


def apply_day_completion(state: StreakState, completed_date: str) -> StreakState:
    """Advance the streak for one completed day plan.

    Call exactly once per completion event. Re-completing the same day is a no-op;
    the next calendar day extends the streak; anything else restarts it at 1.
    """
    if state.last_completed_date is None:
        return StreakState(
            current_streak=1,
            longest_streak=max(1, state.longest_streak),
            last_completed_date=completed_date,
        )

    if state.last_completed_date == completed_date:
        return state

    consecutive = add_days(state.last_completed_date, 1) == completed_date
    current = state.current_streak + 1 if consecutive else 1
    return StreakState(
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_completed_date=completed_date,
    )


def state_from_row(row: dict | None) -> StreakState:
    if row is None:
        return StreakState()
    return StreakState(
        current_streak=int(row.get("current_streak", 0)),
        longest_streak=int(row.get("longest_streak", 0)),
        last_completed_date=row.get("last_completed_date"),
    )
