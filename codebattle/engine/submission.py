"""
Submission pipeline.

Every accepted call to ``submit`` records exactly one Submission, even when
the judge fails (the verdict is then degraded to all-fail/zero). A team's
standing is the best score over all its attempts.
"""

from typing import Callable, Optional

from ..models.models import ContestStatus, Submission, Verdict, generate_id, now_ms
from ..utils.logger_config import get_logger
from .errors import ContestNotActive, NotFoundError, ValidationError
from .judge import Judge, safe_evaluate
from .problems import ProblemBank
from .storage import StateRepository

logger = get_logger("submission")


class SubmissionPipeline:
    def __init__(self, repository: StateRepository, judge: Judge, clock: Optional[Callable[[], int]] = None):
        self.repository = repository
        self.judge = judge
        self.clock = clock or now_ms
        self.problems = ProblemBank(repository)

    def _require_active(self) -> None:
        status = self.repository.get_contest().status
        if status != ContestStatus.ACTIVE:
            raise ContestNotActive(status)

    def _check_code(self, code: str, language: str) -> None:
        if not isinstance(code, str):
            raise ValidationError("Code must be text")
        if not isinstance(language, str) or not language.strip():
            raise ValidationError("Language is required")

    def run(self, code: str, problem_id: str, language: str) -> Verdict:
        """Dry run: grade the code without recording anything"""
        self._require_active()
        self._check_code(code, language)
        problem = self.problems.resolve(problem_id)
        logger.info(f"Dry run on problem {problem.id} ({language})")
        return safe_evaluate(self.judge, code, problem, language)

    def submit(
        self,
        team_id: str,
        problem_id: str,
        code: str,
        language: str,
        session_violations: int = 0
    ) -> Submission:
        """
        Grade and record a submission.

        ``session_violations`` is the proctoring count of the submitting
        session (not the team's lifetime counter) and is stored on the record.
        """
        self._require_active()
        self._check_code(code, language)
        if isinstance(session_violations, bool) or not isinstance(session_violations, int) or session_violations < 0:
            raise ValidationError("Session violation count must be a non-negative integer")
        if self.repository.get_team(team_id) is None:
            raise NotFoundError(f"Team {team_id} not found")

        problem = self.problems.resolve(problem_id)
        verdict = safe_evaluate(self.judge, code, problem, language)

        submission = Submission(
            id=generate_id("sub"),
            team_id=team_id,
            problem_id=problem.id,
            code=code,
            language=language,
            timestamp=self.clock(),
            results=verdict.results,
            score=verdict.total_score,
            ai_score=verdict.ai_score,
            ai_feedback=verdict.ai_feedback,
            proctor_violations=session_violations
        )
        saved = self.repository.append_submission(submission)
        logger.info(
            f"Team {team_id} submitted {submission.id} for {problem.id}: "
            f"score {verdict.total_score}, quality {verdict.ai_score}, violations {session_violations}"
        )
        return saved
