"""Session discovery and classification.

Looks at the tmux sessions that already exist and decides which of them
belong to an agentgrid team:

1. INTEGRATED   - pane count equals the expected team size (2 + K)
2. GROUP_MEMBER - named ``<base>-<role token>`` (one session per role)
3. CANDIDATE    - at least one pane and a short name (<= 3 chars) or a name
                  containing "ai", "claude" or "agent"
4. UNRELATED    - everything else

The first matching rule wins, so a session whose pane count matches is
INTEGRATED even if its name also looks like a group member. The CANDIDATE
rule is a deliberately fuzzy best-effort fallback.

Classification is a pure function of the raw listing: no caching, no state
kept between calls, ties broken only by input order.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from agentgrid.roles import Role, parse_role_token
from agentgrid.tmux_adapter import TerminalAdapter, TmuxError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "ai-teams"
CANDIDATE_MAX_NAME_LENGTH = 3
CANDIDATE_KEYWORDS = ("ai", "claude", "agent")


class DiscoveryError(Exception):
    """Raised when the session listing cannot be obtained."""

    pass


class NotFoundError(Exception):
    """Raised when no team session can be found."""

    pass


class Classification(str, Enum):
    """How a discovered session relates to agentgrid."""

    INTEGRATED = "integrated"
    GROUP_MEMBER = "group_member"
    CANDIDATE = "candidate"
    UNRELATED = "unrelated"


@dataclass(frozen=True)
class SessionRecord:
    """One classified session."""

    name: str
    region_count: int
    classification: Classification
    group_base: str | None = None


def split_role_suffix(name: str) -> tuple[str, Role] | None:
    """Split ``<base>-<token>`` into its base and role.

    Only the last hyphen is considered, so the token must end the name.

    Returns:
        (base, role), or None if the name does not end in a role token
    """
    base, sep, token = name.rpartition("-")
    if not sep or not base:
        return None
    role = parse_role_token(token)
    if role is None:
        return None
    return base, role


def extract_base_name(name: str) -> str | None:
    """Group base of a per-role session name.

    Example:
        >>> extract_base_name("team-worker2")
        'team'
        >>> extract_base_name("team-worker2-extra") is None
        True
    """
    parts = split_role_suffix(name)
    return parts[0] if parts else None


def is_candidate_name(name: str) -> bool:
    return len(name) <= CANDIDATE_MAX_NAME_LENGTH or any(k in name for k in CANDIDATE_KEYWORDS)


def classify_session(name: str, region_count: int, expected_count: int) -> SessionRecord:
    """Classify one session.

    Args:
        name: Session name
        region_count: Panes in the session's current window (0 if unknown)
        expected_count: Pane count of an integrated team (2 + K)

    Returns:
        SessionRecord with its classification
    """
    if region_count == expected_count:
        return SessionRecord(name, region_count, Classification.INTEGRATED)

    base = extract_base_name(name)
    if base is not None:
        return SessionRecord(name, region_count, Classification.GROUP_MEMBER, group_base=base)

    if region_count >= 1 and is_candidate_name(name):
        return SessionRecord(name, region_count, Classification.CANDIDATE)

    return SessionRecord(name, region_count, Classification.UNRELATED)


def classify_sessions(listing: list[tuple[str, int]], expected_count: int) -> dict[str, SessionRecord]:
    """Classify every session of a listing, preserving input order."""
    return {name: classify_session(name, count, expected_count) for name, count in listing}


def group_bases(records: dict[str, SessionRecord]) -> list[str]:
    """Distinct group bases in first-seen order."""
    bases: list[str] = []
    for record in records.values():
        if record.classification == Classification.GROUP_MEMBER and record.group_base not in bases:
            bases.append(record.group_base)
    return bases


def sessions_with(records: dict[str, SessionRecord], classification: Classification) -> list[str]:
    return [name for name, record in records.items() if record.classification == classification]


def choose_default_session(records: dict[str, SessionRecord], fallback: str = DEFAULT_SESSION_NAME) -> str:
    """Pick the session a command should target when none was given.

    Preference: first integrated session, then first group base, then first
    candidate, then the fallback name.
    """
    integrated = sessions_with(records, Classification.INTEGRATED)
    if integrated:
        return integrated[0]

    bases = group_bases(records)
    if bases:
        return bases[0]

    candidates = sessions_with(records, Classification.CANDIDATE)
    if candidates:
        return candidates[0]

    return fallback


class SessionDiscovery:
    """Classify live tmux sessions through a TerminalAdapter."""

    def __init__(self, adapter: TerminalAdapter, fallback_name: str = DEFAULT_SESSION_NAME):
        self.adapter = adapter
        self.fallback_name = fallback_name

    def discover(self, expected_count: int) -> dict[str, SessionRecord]:
        """List and classify all sessions.

        Raises:
            DiscoveryError: If the sessions cannot be listed
        """
        try:
            listing = self.adapter.list_sessions()
        except TmuxError as e:
            raise DiscoveryError(f"Failed to list sessions: {e}") from e

        records = classify_sessions(listing, expected_count)
        for record in records.values():
            logger.debug(
                f"Session {record.name}: {record.region_count} panes "
                f"(expected {expected_count}) -> {record.classification.value}"
            )
        return records

    def find_default_session(self, expected_count: int) -> str:
        """Default target session; always returns a name.

        A listing failure is logged and answered with the fallback name.
        """
        try:
            records = self.discover(expected_count)
        except DiscoveryError as e:
            logger.warning(f"Session discovery failed, using {self.fallback_name}: {e}")
            return self.fallback_name
        return choose_default_session(records, self.fallback_name)

    def detect_active_session(self, expected_count: int) -> tuple[str, Classification]:
        """Find a running team, integrated first, then per-role groups.

        Returns:
            (session or group base name, classification)

        Raises:
            DiscoveryError: If the sessions cannot be listed
            NotFoundError: If no integrated or group session exists
        """
        records = self.discover(expected_count)

        integrated = sessions_with(records, Classification.INTEGRATED)
        if integrated:
            return integrated[0], Classification.INTEGRATED

        bases = group_bases(records)
        if bases:
            return bases[0], Classification.GROUP_MEMBER

        raise NotFoundError("No active team sessions found")


__all__ = [
    "CANDIDATE_KEYWORDS",
    "DEFAULT_SESSION_NAME",
    "Classification",
    "DiscoveryError",
    "NotFoundError",
    "SessionDiscovery",
    "SessionRecord",
    "choose_default_session",
    "classify_session",
    "classify_sessions",
    "extract_base_name",
    "group_bases",
    "split_role_suffix",
]
