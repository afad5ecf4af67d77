from __future__ import annotations

import pytest
import requests

from codebattle.engine.contest import ContestClock
from codebattle.engine.errors import ContestNotActive, NotFoundError, ValidationError
from codebattle.engine.judge import DEGRADED_FEEDBACK
from codebattle.engine.registry import TeamRegistry
from codebattle.engine.submission import SubmissionPipeline
from codebattle.models.models import ContestStatus

from conftest import FakeJudge, make_problem


@pytest.fixture
def arena(repository, rng, fake_clock):
    """An ACTIVE contest with one problem and one team"""
    repository.upsert_problem(make_problem("q1"))
    TeamRegistry(repository).create("Alpha", "pw")
    clock = ContestClock(repository, rng=rng, clock=fake_clock)
    clock.start(60)
    return repository, clock


def test_best_score_is_kept(arena, fake_clock) -> None:
    repository, _ = arena
    pipeline = SubmissionPipeline(repository, FakeJudge([40, 90, 20]), clock=fake_clock)

    scores = []
    for _ in range(3):
        fake_clock.advance(1000)
        scores.append(pipeline.submit("alpha", "q1", "code", "python").score)

    assert scores == [40, 90, 20]
    team = repository.get_team("alpha")
    assert team.total_score == 90
    assert team.last_submission_time == fake_clock.now
    assert len(repository.list_submissions("alpha")) == 3


def test_submission_record_fields(arena, fake_clock) -> None:
    repository, _ = arena
    submission = SubmissionPipeline(repository, FakeJudge([100]), clock=fake_clock).submit(
        "alpha", "q1", "print(1)", "python", session_violations=2
    )

    assert submission.id.startswith("sub-")
    assert submission.problem_id == "q1"
    assert submission.timestamp == fake_clock.now
    assert submission.ai_score == 70
    assert submission.proctor_violations == 2
    assert all(r.passed for r in submission.results)


def test_judge_failure_records_degraded_submission(arena) -> None:
    repository, _ = arena
    judge = FakeJudge([requests.exceptions.Timeout("judge timed out")])
    submission = SubmissionPipeline(repository, judge).submit("alpha", "q1", "code", "python")

    assert submission.score == 0
    assert submission.ai_score == 0
    assert submission.ai_feedback == DEGRADED_FEEDBACK
    assert [r.test_case_id for r in submission.results] == ["tc1", "tc2"]
    assert all(not r.passed and r.actual_output == "Execution Engine Timeout" for r in submission.results)
    assert len(repository.list_submissions()) == 1


def test_degraded_submission_never_lowers_best(arena) -> None:
    repository, _ = arena
    pipeline = SubmissionPipeline(repository, FakeJudge([75, RuntimeError("boom")]))
    pipeline.submit("alpha", "q1", "code", "python")
    pipeline.submit("alpha", "q1", "code", "python")

    assert repository.get_team("alpha").total_score == 75


def test_session_and_persistent_violations_are_separate(arena) -> None:
    repository, _ = arena
    for _ in range(3):
        repository.increment_violation("alpha")
    first = SubmissionPipeline(repository, FakeJudge()).submit("alpha", "q1", "c", "python", session_violations=3)

    # A reloaded session starts counting from zero again
    repository.increment_violation("alpha")
    second = SubmissionPipeline(repository, FakeJudge()).submit("alpha", "q1", "c", "python", session_violations=1)

    assert (first.proctor_violations, second.proctor_violations) == (3, 1)
    assert repository.get_team("alpha").violations == 4


def test_submit_requires_active_contest(repository) -> None:
    TeamRegistry(repository).create("Alpha", "pw")
    pipeline = SubmissionPipeline(repository, FakeJudge())

    with pytest.raises(ContestNotActive, match="LOCKED"):
        pipeline.submit("alpha", "p1", "code", "python")
    assert repository.list_submissions() == []


def test_submit_after_finish_is_rejected(arena) -> None:
    repository, clock = arena
    clock.stop()
    judge = FakeJudge()

    with pytest.raises(ContestNotActive):
        SubmissionPipeline(repository, judge).submit("alpha", "q1", "code", "python")
    assert judge.calls == []


def test_submit_validates_input(arena) -> None:
    repository, _ = arena
    pipeline = SubmissionPipeline(repository, FakeJudge())

    with pytest.raises(ValidationError):
        pipeline.submit("alpha", "q1", "code", "")
    with pytest.raises(ValidationError):
        pipeline.submit("alpha", "q1", "code", "python", session_violations=-1)
    with pytest.raises(NotFoundError):
        pipeline.submit("ghost", "q1", "code", "python")


def test_unknown_problem_resolves_to_first_default(arena) -> None:
    repository, _ = arena
    judge = FakeJudge()
    submission = SubmissionPipeline(repository, judge).submit("alpha", "nope", "code", "python")

    assert submission.problem_id == "p1"
    assert judge.calls[0][1] == "p1"


def test_run_does_not_record(arena) -> None:
    repository, _ = arena
    verdict = SubmissionPipeline(repository, FakeJudge([60])).run("code", "q1", "python")

    assert verdict.total_score == 60
    assert repository.list_submissions() == []
    assert repository.get_team("alpha").total_score == 0


def test_run_requires_active_contest(repository) -> None:
    assert repository.get_contest().status == ContestStatus.LOCKED
    with pytest.raises(ContestNotActive):
        SubmissionPipeline(repository, FakeJudge()).run("code", "p1", "python")
