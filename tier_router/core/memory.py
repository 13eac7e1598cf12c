"""
Session memory.

Remembers which tier served which kind of task during the current
session and recommends a tier for similar tasks. Only the active
session is consulted, so recommendations follow the current working
context rather than all-time history.
"""

import re
import threading
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Pattern, Tuple

import structlog

from tier_router.storage.db import DEFAULT_DB_PATH
from tier_router.storage.models import MemoryEntry
from tier_router.storage.repository import MemoryRepository

logger = structlog.get_logger()

DEFAULT_MAX_ENTRIES_PER_SESSION = 100
DEFAULT_MAX_SESSIONS = 10

GENERAL_PATTERN = "general"
TIER_SWITCH_PATTERN = "tier_switch"

# First match wins, so order matters: "design the architecture" is architecture
TASK_PATTERNS: Tuple[Tuple[Pattern, str], ...] = (
    (re.compile(r"architect", re.IGNORECASE), "architecture"),
    (re.compile(r"design", re.IGNORECASE), "design"),
    (re.compile(r"security", re.IGNORECASE), "security"),
    (re.compile(r"refactor", re.IGNORECASE), "refactor"),
    (re.compile(r"implement", re.IGNORECASE), "implementation"),
    (re.compile(r"create|add", re.IGNORECASE), "creation"),
    (re.compile(r"fix|bug|debug", re.IGNORECASE), "bugfix"),
    (re.compile(r"explore|search|find", re.IGNORECASE), "exploration"),
    (re.compile(r"test", re.IGNORECASE), "testing"),
    (re.compile(r"document", re.IGNORECASE), "documentation"),
)


def extract_pattern(task: str) -> str:
    """Reduce task text to a coarse category."""
    for regex, pattern in TASK_PATTERNS:
        if regex.search(task):
            return pattern
    return GENERAL_PATTERN


@dataclass
class Session:
    """A bounded, time-ordered list of memory entries."""
    session_id: str
    created_at: datetime
    last_updated: datetime
    entries: Deque[MemoryEntry] = field(default_factory=deque)


@dataclass
class MemorySummary:
    """Aggregate view of the current session."""
    session_id: str
    entry_count: int
    success_rate: int
    pattern_counts: Dict[str, int]
    tier_counts: Dict[str, int]


class SessionMemory:
    """Per-session outcome memory backed by SQLite.

    Every change is written to the store first and applied to the
    in-memory session only after the write committed, so a failed
    write never leaves memory ahead of disk.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        max_entries_per_session: int = DEFAULT_MAX_ENTRIES_PER_SESSION,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        clock: Callable[[], datetime] = datetime.now,
        resume: bool = False,
    ):
        if max_entries_per_session <= 0:
            raise ValueError("max_entries_per_session must be > 0")
        if max_sessions <= 0:
            raise ValueError("max_sessions must be > 0")

        self.max_entries_per_session = max_entries_per_session
        self.max_sessions = max_sessions
        self.repository = MemoryRepository(db_path)
        self.repository.initialize()
        self._clock = clock
        self._lock = threading.Lock()
        self._session: Optional[Session] = None

        latest = self.repository.fetch_latest_session() if resume else None
        if latest:
            session_id, created_at, last_updated = latest
            entries = self.repository.fetch_entries(session_id, max_entries_per_session)
            self._session = Session(
                session_id=session_id,
                created_at=created_at,
                last_updated=last_updated,
                entries=deque(entries, maxlen=max_entries_per_session),
            )
            logger.info("memory_session_resumed", session_id=session_id, entries=len(entries))
        else:
            self.start_new_session()

    @property
    def session(self) -> Session:
        return self._session

    def start_new_session(self) -> str:
        """Start an empty session; the oldest sessions beyond capacity are dropped."""
        now = self._clock()
        session_id = uuid.uuid4().hex
        with self._lock:
            self.repository.create_session(session_id, now, self.max_sessions)
            self._session = Session(
                session_id=session_id,
                created_at=now,
                last_updated=now,
                entries=deque(maxlen=self.max_entries_per_session),
            )
        logger.info("memory_session_started", session_id=session_id)
        return session_id

    def record_outcome(
        self,
        task: str,
        tier_used: str,
        success: bool,
        context: Optional[Dict[str, Any]] = None,
    ) -> MemoryEntry:
        """Record how a task was served.

        Raises:
            PersistenceError: If the entry could not be stored
        """
        entry = MemoryEntry(
            timestamp=self._clock(),
            task_pattern=extract_pattern(task),
            tier_used=tier_used,
            success=success,
            context=context,
        )
        self._append(entry)
        return entry

    def record_tier_switch(self, from_tier: str, to_tier: str, reason: Optional[str] = None) -> MemoryEntry:
        """Record a tier switch. Switches are not task outcomes, so they always count as successful."""
        entry = MemoryEntry(
            timestamp=self._clock(),
            task_pattern=TIER_SWITCH_PATTERN,
            tier_used=to_tier,
            success=True,
            context={"from_tier": from_tier, "to_tier": to_tier, "reason": reason},
        )
        self._append(entry)
        return entry

    def _append(self, entry: MemoryEntry) -> None:
        with self._lock:
            session = self._session
            self.repository.insert_entry(session.session_id, entry, self.max_entries_per_session)
            session.entries.append(entry)
            session.last_updated = entry.timestamp

    def recommend(self, task: str) -> Optional[str]:
        """Most used tier among successful entries with the same task pattern.

        Ties go to the tier that was seen first.
        """
        pattern = extract_pattern(task)
        counts: Dict[str, int] = {}
        for entry in self._session.entries:
            if entry.success and entry.task_pattern == pattern:
                counts[entry.tier_used] = counts.get(entry.tier_used, 0) + 1

        best_tier = None
        best_count = 0
        for tier, count in counts.items():
            if count > best_count:
                best_tier, best_count = tier, count
        return best_tier

    def recent_patterns(self, limit: int = 5) -> List[str]:
        entries = list(self._session.entries)
        return [entry.task_pattern for entry in entries[-limit:]] if limit > 0 else []

    def summary(self) -> MemorySummary:
        entries = list(self._session.entries)
        successes = sum(1 for entry in entries if entry.success)
        return MemorySummary(
            session_id=self._session.session_id,
            entry_count=len(entries),
            success_rate=round(successes / len(entries) * 100) if entries else 0,
            pattern_counts=dict(Counter(entry.task_pattern for entry in entries)),
            tier_counts=dict(Counter(entry.tier_used for entry in entries)),
        )

    def clear(self) -> None:
        """Drop all sessions and start a fresh one."""
        with self._lock:
            self.repository.clear()
        self.start_new_session()
