"""
Proctoring monitor for a team session.

The guard turns presentation events (full-screen changes, focus and
visibility changes, key combinations, clipboard actions) into violation
events while the contest is ACTIVE. It never blocks run/submit; clipboard
actions are suppressed outright and devtools shortcuts are swallowed.

Each violation bumps the team's persistent counter through ``reporter`` and
the session counter kept here. The session counter starts at zero on every
``start()`` and is the value attached to the next submission.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, List, Optional, Union

from ..models.models import ContestStatus, ViolationKind, now_ms
from ..utils.logger_config import get_logger

logger = get_logger("proctor")

ALERT_MESSAGES = {
    ViolationKind.FULLSCREEN_EXIT: (
        "PROCTOR WARNING: Leaving full-screen mode is strictly prohibited. "
        "This incident has been logged for Admin review."
    ),
    ViolationKind.FOCUS_LOST: (
        "PROCTOR WARNING: Tab switching or losing focus is strictly prohibited. "
        "This incident has been logged for Admin review."
    ),
    ViolationKind.DEVTOOLS_SHORTCUT: (
        "PROCTOR WARNING: Developer tools are disabled during the contest. "
        "This incident has been logged for Admin review."
    ),
}

_KEY_ALIASES = {
    "control": "ctrl",
    "cmd": "meta",
    "command": "meta",
    "win": "meta",
    "option": "alt",
    "opt": "alt",
}

DEVTOOLS_COMBOS: FrozenSet[FrozenSet[str]] = frozenset(
    frozenset(combo) for combo in (
        {"f12"},
        {"ctrl", "shift", "i"},
        {"ctrl", "shift", "j"},
        {"ctrl", "shift", "c"},
        {"ctrl", "u"},
        {"meta", "alt", "i"},
        {"meta", "alt", "j"},
        {"meta", "alt", "c"},
        {"meta", "alt", "u"},
    )
)


def normalize_keys(keys: Union[str, Iterable[str]]) -> FrozenSet[str]:
    """'Ctrl+Shift+I' or ['Control', 'Shift', 'i'] -> {'ctrl', 'shift', 'i'}"""
    if isinstance(keys, str):
        keys = keys.split("+")
    normalized = set()
    for key in keys:
        key = key.strip().lower()
        if key:
            normalized.add(_KEY_ALIASES.get(key, key))
    return frozenset(normalized)


def is_devtools_combo(keys: Union[str, Iterable[str]]) -> bool:
    return normalize_keys(keys) in DEVTOOLS_COMBOS


@dataclass
class ViolationDetected:
    """One recorded integrity event"""

    team_id: str
    kind: ViolationKind
    session_count: int
    at: int


class MediaCapture(ABC):
    """Camera/microphone capture held while the contest is ACTIVE"""

    @abstractmethod
    def acquire(self) -> None:
        pass

    @abstractmethod
    def release(self) -> None:
        pass

    @property
    @abstractmethod
    def active(self) -> bool:
        pass


class NullMediaCapture(MediaCapture):
    """Capture stand-in for sessions without a camera"""

    def __init__(self):
        self._active = False

    def acquire(self) -> None:
        self._active = True

    def release(self) -> None:
        self._active = False

    @property
    def active(self) -> bool:
        return self._active


class SessionGuard:
    def __init__(
        self,
        team_id: str,
        reporter: Callable[[str], None],
        contest_status: Callable[[], ContestStatus],
        alert: Optional[Callable[[str], None]] = None,
        media: Optional[MediaCapture] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        self.team_id = team_id
        self.reporter = reporter
        self.contest_status = contest_status
        self.alert = alert or (lambda message: logger.warning(message))
        self.media = media or NullMediaCapture()
        self.clock = clock or now_ms

        self._lock = threading.Lock()
        self._subscribers: List[Callable[[ViolationDetected], None]] = []
        self._attached = False
        self._fullscreen = False
        self._focus_lost = False
        self._session_violations = 0

    # Lifecycle

    def start(self) -> "SessionGuard":
        with self._lock:
            self._attached = True
            self._fullscreen = False
            self._focus_lost = False
            self._session_violations = 0
        logger.debug(f"Session guard attached for team {self.team_id}")
        self.on_contest_status(self.contest_status())
        return self

    def stop(self) -> None:
        with self._lock:
            self._attached = False
        self._release_media()
        logger.debug(f"Session guard detached for team {self.team_id}")

    def __enter__(self) -> "SessionGuard":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    @property
    def attached(self) -> bool:
        return self._attached

    @property
    def session_violations(self) -> int:
        return self._session_violations

    @property
    def is_fullscreen(self) -> bool:
        return self._fullscreen

    @property
    def requires_fullscreen_gate(self) -> bool:
        """True while the contest surface must be covered by the full-screen prompt"""
        return self._attached and self._is_active() and not self._fullscreen

    def subscribe(self, callback: Callable[[ViolationDetected], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[ViolationDetected], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # Event inputs

    def on_contest_status(self, status: ContestStatus) -> None:
        """Hold media capture exactly while the contest is ACTIVE"""
        if self._attached and status == ContestStatus.ACTIVE:
            if not self.media.active:
                try:
                    self.media.acquire()
                    logger.info(f"Proctor capture started for team {self.team_id}")
                except Exception as e:
                    logger.error(f"Proctoring camera access failed for team {self.team_id}: {e}")
        else:
            self._release_media()

    def on_fullscreen_change(self, is_fullscreen: bool) -> None:
        was_fullscreen = self._fullscreen
        self._fullscreen = bool(is_fullscreen)
        if was_fullscreen and not self._fullscreen and self._watching():
            self._record(ViolationKind.FULLSCREEN_EXIT)

    def on_focus_lost(self) -> None:
        # Before full-screen is entered, focus changes are not penalized
        if not (self._watching() and self._fullscreen):
            return
        if self._focus_lost:
            return
        self._focus_lost = True
        self._record(ViolationKind.FOCUS_LOST)

    def on_focus_gained(self) -> None:
        self._focus_lost = False

    def on_visibility_change(self, hidden: bool) -> None:
        if hidden:
            self.on_focus_lost()
        else:
            self.on_focus_gained()

    def on_key_combo(self, keys: Union[str, Iterable[str]]) -> bool:
        """Returns False when the key press must be swallowed"""
        if not self._watching() or not is_devtools_combo(keys):
            return True
        self._record(ViolationKind.DEVTOOLS_SHORTCUT)
        return False

    def on_clipboard(self, action: str) -> bool:
        """Copy, cut and paste never complete during an active contest; no violation is counted"""
        if not self._watching():
            return True
        logger.debug(f"Blocked clipboard {action} for team {self.team_id}")
        return False

    # Internals

    def _is_active(self) -> bool:
        try:
            return self.contest_status() == ContestStatus.ACTIVE
        except Exception as e:
            logger.error(f"Could not read contest status: {e}")
            return False

    def _watching(self) -> bool:
        return self._attached and self._is_active()

    def _release_media(self) -> None:
        if self.media.active:
            try:
                self.media.release()
            finally:
                logger.info(f"Proctor capture released for team {self.team_id}")

    def _record(self, kind: ViolationKind) -> None:
        with self._lock:
            self._session_violations += 1
            count = self._session_violations
        try:
            self.reporter(self.team_id)
        except Exception as e:
            # Integrity events are non-fatal; the session count still stands
            logger.error(f"Failed to report {kind.value} for team {self.team_id}: {e}")
        logger.warning(f"Violation {kind.value} for team {self.team_id} (session count {count})")

        self.alert(ALERT_MESSAGES[kind])
        event = ViolationDetected(team_id=self.team_id, kind=kind, session_count=count, at=self.clock())
        for callback in list(self._subscribers):
            callback(event)
