"""
Team registry and login.

Team ids are derived from names, so two names that differ only in case or
whitespace address the same team; registering such a name again replaces
the earlier record.
"""

from typing import List, Optional

from ..models.models import Identity, Team, UserRole, normalize_team_id
from ..utils.logger_config import get_logger
from .errors import AuthenticationError, NotFoundError, ValidationError
from .storage import StateRepository

logger = get_logger("registry")


class TeamRegistry:
    def __init__(self, repository: StateRepository, admin_username: str = "admin", admin_password: str = "admin"):
        self.repository = repository
        self.admin_username = admin_username
        self.admin_password = admin_password

    def create(self, name: str, password: str, members: Optional[List[str]] = None) -> Team:
        """Register a team, replacing any team with the same derived id"""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Team name is required")
        if not isinstance(password, str) or not password.strip():
            raise ValidationError("Team password is required")

        team_id = normalize_team_id(name)
        if self.repository.get_team(team_id) is not None:
            logger.info(f"Team {team_id} already registered, replacing it")

        team = Team(id=team_id, name=name, password=password, members=members or [])
        saved = self.repository.upsert_team(team)
        logger.info(f"Registered team {saved.name} ({saved.id})")
        return saved

    def delete(self, team_id: str) -> None:
        """Remove a team; its submissions stay in the history"""
        self.repository.delete_team(team_id)
        logger.info(f"Deleted team {team_id}")

    def get(self, team_id: str) -> Team:
        team = self.repository.get_team(team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found")
        return team

    def list(self) -> List[Team]:
        return self.repository.list_teams()

    def find(self, identifier: str) -> Optional[Team]:
        """Case-insensitive lookup by team name or id"""
        wanted = identifier.lower()
        for team in self.repository.list_teams():
            if team.name.lower() == wanted or team.id == wanted:
                return team
        return None

    def login(self, identifier: str, password: str, role: UserRole) -> Identity:
        """Resolve credentials to the administrator or to a team (plain-text, exact password match)"""
        role = UserRole(getattr(role, "value", role))
        if role == UserRole.ADMIN:
            if identifier == self.admin_username and password == self.admin_password:
                return Identity(id="admin", role=UserRole.ADMIN, name="Administrator")
            logger.warning("Rejected admin login")
            raise AuthenticationError("Invalid admin credentials.")

        team = self.find(identifier or "")
        if team is None:
            raise AuthenticationError("Team not found.")
        if team.password != password:
            logger.warning(f"Rejected login for team {team.id}")
            raise AuthenticationError("Incorrect password for this team.")
        return Identity(id=team.id, role=UserRole.TEAM, name=team.name)
