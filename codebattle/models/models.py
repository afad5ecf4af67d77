from enum import Enum
from typing import Any, Dict, List, Optional
import re
import time
import uuid


# Helper function to generate unique IDs
def generate_id(prefix: Optional[str] = None) -> str:
    """Generate a unique ID for entities"""
    value = uuid.uuid4().hex
    return f"{prefix}-{value}" if prefix else value


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


_WHITESPACE = re.compile(r"\s")


def normalize_team_id(name: str) -> str:
    """Derive a team id from its name: lowercase, each whitespace character becomes a hyphen"""
    return _WHITESPACE.sub("-", name.lower())


def clamp_score(value: Any) -> int:
    """Coerce a score to an int in 0..100"""
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


class ContestStatus(str, Enum):
    LOCKED = "LOCKED"
    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    TEAM = "TEAM"


class ViolationKind(str, Enum):
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT"
    FOCUS_LOST = "FOCUS_LOST"
    DEVTOOLS_SHORTCUT = "DEVTOOLS_SHORTCUT"


class TestCase:
    __test__ = False  # not a pytest class

    def __init__(self, id: str, input: str, expected_output: str):
        self.id = id
        self.input = input
        self.expected_output = expected_output

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "input": self.input,
            "expectedOutput": self.expected_output
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TestCase":
        return cls(
            id=str(data.get("id", "")),
            input=data.get("input", ""),
            expected_output=data.get("expectedOutput", data.get("expected_output", ""))
        )


class Problem:
    def __init__(
        self,
        id: str,
        title: str,
        difficulty: Difficulty,
        description: str = "",
        constraints: Optional[List[str]] = None,
        test_cases: Optional[List[TestCase]] = None
    ):
        self.id = id
        self.title = title
        self.difficulty = difficulty
        self.description = description
        self.constraints = list(constraints or [])
        self.test_cases = list(test_cases or [])

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "difficulty": self.difficulty.value,  # Use .value for enum serialization
            "description": self.description,
            "constraints": list(self.constraints),
            "testCases": [tc.to_dict() for tc in self.test_cases]
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Problem":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title", ""),
            difficulty=Difficulty(data.get("difficulty", Difficulty.EASY.value)),
            description=data.get("description", ""),
            constraints=data.get("constraints") or [],
            test_cases=[TestCase.from_dict(tc) for tc in data.get("testCases") or data.get("test_cases") or []]
        )


class Team:
    def __init__(
        self,
        id: str,
        name: str,
        password: str,
        members: Optional[List[str]] = None,
        assigned_problem_id: Optional[str] = None,
        total_score: int = 0,
        last_submission_time: Optional[int] = None,
        violations: int = 0
    ):
        self.id = id
        self.name = name
        # Shared team-level secret, compared verbatim at login
        self.password = password
        self.members = list(members or [])
        self.assigned_problem_id = assigned_problem_id
        self.total_score = total_score
        self.last_submission_time = last_submission_time
        self.violations = violations

    def to_dict(self, include_password: bool = True) -> Dict:
        result = {
            "id": self.id,
            "name": self.name,
            "members": list(self.members),
            "assignedProblemId": self.assigned_problem_id,
            "totalScore": self.total_score,
            "lastSubmissionTime": self.last_submission_time,
            "violations": self.violations
        }
        if include_password:
            result["password"] = self.password
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> "Team":
        last = data.get("lastSubmissionTime")
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            password=data.get("password") or "",
            members=data.get("members") or [],
            assigned_problem_id=data.get("assignedProblemId"),
            total_score=int(data.get("totalScore") or 0),
            last_submission_time=int(last) if last is not None else None,
            violations=int(data.get("violations") or 0)
        )


class TestCaseResult:
    __test__ = False

    def __init__(self, test_case_id: str, passed: bool, actual_output: str = "", error: Optional[str] = None):
        self.test_case_id = test_case_id
        self.passed = passed
        self.actual_output = actual_output
        self.error = error

    def to_dict(self) -> Dict:
        result = {
            "testCaseId": self.test_case_id,
            "passed": self.passed,
            "actualOutput": self.actual_output
        }
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> "TestCaseResult":
        return cls(
            test_case_id=str(data.get("testCaseId", "")),
            passed=bool(data.get("passed", False)),
            actual_output=str(data.get("actualOutput") or ""),
            error=data.get("error")
        )


class Verdict:
    """The Judge's answer for one piece of code against one problem"""

    def __init__(self, results: List[TestCaseResult], total_score: int, ai_score: int, ai_feedback: str):
        self.results = results
        self.total_score = total_score
        self.ai_score = ai_score
        self.ai_feedback = ai_feedback

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    def to_dict(self) -> Dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "totalScore": self.total_score,
            "aiScore": self.ai_score,
            "aiFeedback": self.ai_feedback
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Verdict":
        return cls(
            results=[TestCaseResult.from_dict(r) for r in data.get("results") or []],
            total_score=int(data.get("totalScore") or 0),
            ai_score=int(data.get("aiScore") or 0),
            ai_feedback=str(data.get("aiFeedback") or "")
        )


class Submission:
    """A graded attempt by a team on a problem. Never mutated after creation."""

    def __init__(
        self,
        id: str,
        team_id: str,
        problem_id: str,
        code: str,
        language: str,
        timestamp: int,
        results: Optional[List[TestCaseResult]] = None,
        score: int = 0,
        ai_score: Optional[int] = None,
        ai_feedback: Optional[str] = None,
        proctor_violations: Optional[int] = None
    ):
        self.id = id
        self.team_id = team_id
        self.problem_id = problem_id
        self.code = code
        self.language = language
        self.timestamp = timestamp
        self.results = list(results or [])
        self.score = score
        self.ai_score = ai_score
        self.ai_feedback = ai_feedback
        self.proctor_violations = proctor_violations

    def to_dict(self, include_code: bool = True) -> Dict:
        result = {
            "id": self.id,
            "teamId": self.team_id,
            "problemId": self.problem_id,
            "language": self.language,
            "timestamp": self.timestamp,
            "results": [r.to_dict() for r in self.results],
            "score": self.score,
            "aiScore": self.ai_score,
            "aiFeedback": self.ai_feedback,
            "proctorViolations": self.proctor_violations
        }
        if include_code:
            result["code"] = self.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> "Submission":
        return cls(
            id=str(data.get("id", "")),
            team_id=str(data.get("teamId", "")),
            problem_id=str(data.get("problemId", "")),
            code=data.get("code", ""),
            language=data.get("language", ""),
            timestamp=int(data.get("timestamp") or 0),
            results=[TestCaseResult.from_dict(r) for r in data.get("results") or []],
            score=int(data.get("score") or 0),
            ai_score=data.get("aiScore"),
            ai_feedback=data.get("aiFeedback"),
            proctor_violations=data.get("proctorViolations")
        )


class ContestState:
    def __init__(
        self,
        status: ContestStatus = ContestStatus.LOCKED,
        start_time: Optional[int] = None,
        duration_minutes: int = 60,
        problem_bank: Optional[List[Problem]] = None
    ):
        self.status = status
        # Set on the transition to ACTIVE and kept after FINISHED
        self.start_time = start_time
        self.duration_minutes = duration_minutes
        self.problem_bank = list(problem_bank or [])

    @property
    def end_time(self) -> Optional[int]:
        if self.start_time is None:
            return None
        return self.start_time + self.duration_minutes * 60000

    def get_problem(self, problem_id: str) -> Optional[Problem]:
        for problem in self.problem_bank:
            if problem.id == problem_id:
                return problem
        return None

    def to_dict(self) -> Dict:
        result = {
            "status": self.status.value,
            "durationMinutes": self.duration_minutes,
            "problemBank": [p.to_dict() for p in self.problem_bank]
        }
        if self.start_time is not None:
            result["startTime"] = self.start_time
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> "ContestState":
        start = data.get("startTime")
        return cls(
            status=ContestStatus(data.get("status", ContestStatus.LOCKED.value)),
            start_time=int(start) if start is not None else None,
            duration_minutes=int(data.get("durationMinutes") or 60),
            problem_bank=[Problem.from_dict(p) for p in data.get("problemBank") or []]
        )


class Identity:
    """Result of a successful login"""

    def __init__(self, id: str, role: UserRole, name: str):
        self.id = id
        self.role = role
        self.name = name

    def to_dict(self) -> Dict:
        return {"id": self.id, "role": self.role.value, "name": self.name}

    @classmethod
    def from_dict(cls, data: Dict) -> "Identity":
        return cls(id=data["id"], role=UserRole(data["role"]), name=data.get("name", ""))
