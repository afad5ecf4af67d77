"""
Contest clock and lifecycle.

LOCKED -> ACTIVE -> FINISHED. ``reset`` is not a transition: it forces LOCKED
from any state and wipes teams and submissions while keeping the problem bank.
"""

import random
from typing import Callable, Optional

from ..models.models import ContestState, ContestStatus, now_ms
from ..utils.logger_config import get_logger
from .errors import PreconditionError, ValidationError
from .problems import effective_bank
from .storage import StateRepository

logger = get_logger("contest")


def validate_duration(duration_minutes) -> int:
    """Accept positive integers (and integral floats), reject everything else"""
    if isinstance(duration_minutes, bool):
        raise ValidationError("Duration must be a positive integer number of minutes")
    if isinstance(duration_minutes, float):
        if not duration_minutes.is_integer():
            raise ValidationError("Duration must be a whole number of minutes")
        duration_minutes = int(duration_minutes)
    if not isinstance(duration_minutes, int):
        raise ValidationError("Duration must be a positive integer number of minutes")
    if duration_minutes <= 0:
        raise ValidationError("Duration must be greater than zero")
    return duration_minutes


def format_duration(ms: int) -> str:
    seconds = max(0, ms) // 1000
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


class ContestClock:
    """
    Owns the contest status, start time and duration.

    ``rng`` is the random source for problem assignment and ``clock`` returns
    epoch milliseconds; tests inject deterministic versions of both.
    """

    def __init__(
        self,
        repository: StateRepository,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], int]] = None,
        auto_finish: bool = False
    ):
        self.repository = repository
        self.rng = rng or random.Random()
        self.clock = clock or now_ms
        self.auto_finish = auto_finish

    def state(self) -> ContestState:
        return self.repository.get_contest()

    @property
    def status(self) -> ContestStatus:
        return self.state().status

    def start(self, duration_minutes) -> ContestState:
        duration = validate_duration(duration_minutes)
        contest = self.state()
        if contest.status != ContestStatus.LOCKED:
            raise PreconditionError(
                f"Contest can only be started from LOCKED (status: {contest.status.value}); reset the arena first"
            )

        # Drawn inside the store's mutation so late registrations are covered
        assignments = self.repository.begin_contest(
            {"status": ContestStatus.ACTIVE, "startTime": self.clock(), "durationMinutes": duration},
            lambda bank: self.rng.choice(effective_bank(bank)).id
        )
        logger.info(f"Contest started for {duration} minutes with {len(assignments)} teams")
        for team_id, problem_id in assignments.items():
            logger.debug(f"Team {team_id} assigned problem {problem_id}")
        return self.state()

    def stop(self) -> ContestStatus:
        """Finish an active contest; a no-op when LOCKED or already FINISHED"""
        found = self.repository.finish_contest()
        if found != ContestStatus.ACTIVE:
            logger.info(f"Stop requested while {found.value}, nothing to do")
            return found
        logger.info("Contest finished")
        return ContestStatus.FINISHED

    def reset(self) -> None:
        self.repository.reset_all()
        logger.warning("Arena reset: teams and submissions cleared, contest LOCKED")

    def remaining_ms(self, contest: Optional[ContestState] = None, now: Optional[int] = None) -> int:
        contest = contest or self.state()
        if contest.start_time is None:
            return 0
        now = self.clock() if now is None else now
        return max(0, contest.end_time - now)

    def elapsed_ms(self, contest: Optional[ContestState] = None, now: Optional[int] = None) -> int:
        contest = contest or self.state()
        if contest.start_time is None:
            return 0
        now = self.clock() if now is None else now
        return max(0, now - contest.start_time)

    def format_remaining(self, contest: Optional[ContestState] = None) -> str:
        return format_duration(self.remaining_ms(contest))

    def is_expired(self, contest: Optional[ContestState] = None) -> bool:
        contest = contest or self.state()
        return contest.status == ContestStatus.ACTIVE and contest.start_time is not None \
            and self.remaining_ms(contest) == 0

    def enforce_expiry(self) -> bool:
        """Stop an expired contest when the auto-finish policy is on. Returns True if it stopped."""
        if not self.auto_finish:
            return False
        contest = self.state()
        if not self.is_expired(contest):
            return False
        logger.info("Contest time is up, finishing automatically")
        self.stop()
        return True
