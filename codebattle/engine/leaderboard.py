"""Standings and admin dashboard views over the contest state."""

from typing import Any, Dict, List, Optional

from ..models.models import Submission, Team
from .contest import ContestClock, format_duration
from .errors import ValidationError


def standings(teams: List[Team]) -> List[Dict[str, Any]]:
    """
    Rank teams by best score. Ties go to the team that reached it first;
    teams that never submitted come after those that did.
    """
    def sort_key(team: Team):
        no_submission = team.last_submission_time is None
        return (-team.total_score, no_submission, team.last_submission_time or 0, team.name.lower())

    rankings = []
    for rank, team in enumerate(sorted(teams, key=sort_key), start=1):
        entry = team.to_dict(include_password=False)
        entry["rank"] = rank
        rankings.append(entry)
    return rankings


def submission_feed(submissions: List[Submission], teams: List[Team], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Newest first, each joined with its team name ("Unknown" once the team is deleted)"""
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        raise ValidationError("limit must be a positive integer")
    names = {team.id: team.name for team in teams}
    feed = []
    for submission in sorted(submissions, key=lambda s: s.timestamp, reverse=True)[:limit]:
        entry = submission.to_dict(include_code=True)
        entry["teamName"] = names.get(submission.team_id, "Unknown")
        feed.append(entry)
    return feed


def dashboard_summary(state: Dict[str, Any], clock: ContestClock) -> Dict[str, Any]:
    contest = state["contest"]
    teams = state["teams"]
    remaining = clock.remaining_ms(contest)
    return {
        "status": contest.status.value,
        "startTime": contest.start_time,
        "durationMinutes": contest.duration_minutes,
        "remainingMs": remaining,
        "remaining": format_duration(remaining),
        "elapsedMs": clock.elapsed_ms(contest),
        "teamCount": len(teams),
        "problemCount": len(contest.problem_bank),
        "submissionCount": len(state["submissions"]),
        "totalViolations": sum(team.violations for team in teams)
    }
