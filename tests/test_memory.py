"""
Unit tests for session memory.

Tests pattern extraction, recommendations and bounded storage.
"""

import os
import tempfile
from unittest.mock import patch

import pytest

from tier_router.core.errors import PersistenceError
from tier_router.core.memory import (
    GENERAL_PATTERN,
    TIER_SWITCH_PATTERN,
    SessionMemory,
    extract_pattern,
)


class TestExtractPattern:
    """Test task categorization."""

    @pytest.mark.parametrize("task,expected", [
        ("Design the new architecture", "architecture"),
        ("design a schema", "design"),
        ("Review SECURITY headers", "security"),
        ("refactor the parser", "refactor"),
        ("implement retries", "implementation"),
        ("add a column", "creation"),
        ("fix the login bug", "bugfix"),
        ("search for usages", "exploration"),
        ("write unit tests", "testing"),
        ("document the API", "documentation"),
        ("hello there", GENERAL_PATTERN),
    ])
    def test_patterns(self, task, expected):
        assert extract_pattern(task) == expected


class TestSessionMemory:
    """Test recording and recommendations."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.memory = SessionMemory(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_empty_memory_has_no_recommendation(self):
        assert self.memory.recommend("fix the bug") is None

    def test_recommends_most_used_successful_tier(self):
        self.memory.record_outcome("fix the bug", "tier1", True)
        self.memory.record_outcome("debug the crash", "tier2", True)
        self.memory.record_outcome("fix the leak", "tier2", True)
        self.memory.record_outcome("fix again", "tier3", False)

        assert self.memory.recommend("fix something else") == "tier2"

    def test_failures_are_not_recommended(self):
        self.memory.record_outcome("fix the bug", "tier3", False)

        assert self.memory.recommend("fix the bug") is None

    def test_tie_goes_to_first_seen_tier(self):
        self.memory.record_outcome("search logs", "tier2", True)
        self.memory.record_outcome("find callers", "tier1", True)

        assert self.memory.recommend("explore the repo") == "tier2"

    def test_other_patterns_ignored(self):
        self.memory.record_outcome("design the API", "tier3", True)

        assert self.memory.recommend("write tests") is None

    def test_tier_switches_do_not_affect_recommendations(self):
        entry = self.memory.record_tier_switch("tier1", "tier3", "manual")

        assert entry.task_pattern == TIER_SWITCH_PATTERN
        assert entry.context == {"from_tier": "tier1", "to_tier": "tier3", "reason": "manual"}
        assert self.memory.recommend("tier_switch") is None
        assert self.memory.summary().entry_count == 1

    def test_entries_bounded_oldest_evicted(self):
        memory = SessionMemory(self.db_path, max_entries_per_session=3)
        for tier in ("tier1", "tier2", "tier3", "tier3"):
            memory.record_outcome("fix it", tier, True)

        assert [e.tier_used for e in memory.session.entries] == ["tier2", "tier3", "tier3"]
        assert memory.repository.count_entries(memory.session.session_id) == 3

    def test_summary(self):
        self.memory.record_outcome("fix the bug", "tier1", True)
        self.memory.record_outcome("fix the bug", "tier2", False)
        self.memory.record_outcome("design it", "tier3", True)

        summary = self.memory.summary()

        assert summary.entry_count == 3
        assert summary.success_rate == 67
        assert summary.pattern_counts == {"bugfix": 2, "design": 1}
        assert summary.tier_counts == {"tier1": 1, "tier2": 1, "tier3": 1}

    def test_empty_summary(self):
        summary = self.memory.summary()

        assert summary.entry_count == 0
        assert summary.success_rate == 0

    def test_recent_patterns(self):
        for task in ("fix a", "design b", "test c"):
            self.memory.record_outcome(task, "tier1", True)

        assert self.memory.recent_patterns(2) == ["design", "testing"]
        assert self.memory.recent_patterns(0) == []

    def test_new_session_starts_empty(self):
        self.memory.record_outcome("fix the bug", "tier2", True)
        first = self.memory.session.session_id

        second = self.memory.start_new_session()

        assert second != first
        assert self.memory.recommend("fix the bug") is None

    def test_sessions_bounded(self):
        memory = SessionMemory(self.db_path, max_sessions=2)
        memory.start_new_session()
        memory.start_new_session()

        assert len(memory.repository.session_ids()) == 2
        assert memory.repository.session_ids()[-1] == memory.session.session_id

    def test_resume_latest_session(self):
        self.memory.record_outcome("fix the bug", "tier2", True, {"attempt": 1})

        resumed = SessionMemory(self.db_path, resume=True)

        assert resumed.session.session_id == self.memory.session.session_id
        assert resumed.recommend("fix it") == "tier2"
        assert resumed.session.entries[0].context == {"attempt": 1}

    def test_failed_write_leaves_memory_unchanged(self):
        self.memory.record_outcome("fix the bug", "tier1", True)

        with patch.object(
            self.memory.repository,
            "insert_entry",
            side_effect=PersistenceError("disk full", path=self.db_path, operation="write memory entry"),
        ):
            with pytest.raises(PersistenceError):
                self.memory.record_outcome("fix the bug", "tier3", True)

        assert [e.tier_used for e in self.memory.session.entries] == ["tier1"]
        assert self.memory.recommend("fix the bug") == "tier1"

    def test_clear(self):
        self.memory.record_outcome("fix the bug", "tier1", True)
        old_session = self.memory.session.session_id

        self.memory.clear()

        assert self.memory.session.session_id != old_session
        assert self.memory.summary().entry_count == 0
        assert self.memory.repository.session_ids() == [self.memory.session.session_id]

    def test_invalid_bounds_rejected(self):
        with pytest.raises(ValueError, match="max_entries_per_session"):
            SessionMemory(self.db_path, max_entries_per_session=0)
        with pytest.raises(ValueError, match="max_sessions"):
            SessionMemory(self.db_path, max_sessions=0)
