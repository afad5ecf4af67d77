from __future__ import annotations

from codebattle.models.models import (
    ContestState, ContestStatus, Identity, Submission, Team, TestCaseResult, UserRole,
    Verdict, clamp_score, generate_id
)

from conftest import make_problem


def test_wire_keys_are_camel_case() -> None:
    team = Team(id="a", name="A", password="pw", assigned_problem_id="p1", total_score=5, last_submission_time=9)
    assert team.to_dict() == {
        "id": "a", "name": "A", "password": "pw", "members": [], "assignedProblemId": "p1",
        "totalScore": 5, "lastSubmissionTime": 9, "violations": 0
    }
    assert "password" not in team.to_dict(include_password=False)
    assert make_problem("q1").to_dict()["testCases"][0] == {"id": "tc1", "input": "1", "expectedOutput": "1"}


def test_contest_state_omits_unset_start_time() -> None:
    contest = ContestState()
    assert contest.to_dict() == {"status": "LOCKED", "durationMinutes": 60, "problemBank": []}
    assert contest.end_time is None

    started = ContestState.from_dict({"status": "ACTIVE", "startTime": 1000, "durationMinutes": 2})
    assert started.status == ContestStatus.ACTIVE
    assert started.end_time == 121_000


def test_submission_from_wire() -> None:
    submission = Submission.from_dict({
        "id": "s1", "teamId": "a", "problemId": "p1", "code": "x", "language": "python",
        "timestamp": 5, "score": 40, "aiScore": 70, "aiFeedback": "ok", "proctorViolations": 2,
        "results": [{"testCaseId": "tc1", "passed": True, "actualOutput": "1"}]
    })
    assert (submission.team_id, submission.score, submission.proctor_violations) == ("a", 40, 2)
    assert submission.results[0].passed
    assert "code" not in submission.to_dict(include_code=False)


def test_verdict_and_identity_from_wire() -> None:
    verdict = Verdict([TestCaseResult("tc1", False, "2", "Wrong answer")], 0, 30, "Close")
    restored = Verdict.from_dict(verdict.to_dict())
    assert restored.results[0].error == "Wrong answer"
    assert (restored.total_score, restored.ai_score, restored.ai_feedback) == (0, 30, "Close")

    identity = Identity.from_dict({"id": "admin", "role": "ADMIN", "name": "Administrator"})
    assert identity.role == UserRole.ADMIN


def test_helpers() -> None:
    assert generate_id("sub").startswith("sub-")
    assert generate_id() != generate_id()
    assert clamp_score(150) == 100
    assert clamp_score("55.4") == 55
    assert clamp_score(None) == 0
