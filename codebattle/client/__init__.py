"""
Client package for CodeBattle.

Keeps a participant or administrator session in sync with the server and
falls back to a local snapshot while the server is unreachable.
"""

from .sync import ContestClient, OfflineJudge, OutcomeUnknown, ServerUnreachable, SyncMode

__all__ = ["ContestClient", "OfflineJudge", "OutcomeUnknown", "ServerUnreachable", "SyncMode"]
