"""Tests for the learning engine and the tool outcome observer."""

import json
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from foundry.core.exceptions import InvalidTransitionError
from foundry.learning.engine import LearningEngine
from foundry.learning.models import FailureEntry, InsightEntry, PatternEntry, SuccessEntry
from foundry.learning.observer import ToolOutcomeObserver
from foundry.learning.signatures import match_signature


class TestRecording:
    """Tests for recording failures, resolutions, successes and insights."""

    def test_record_failure(self, engine: LearningEngine) -> None:
        """A failure is stored and becomes the subject's open failure."""
        entry_id = engine.record_failure("weather_api", "ECONNREFUSED", "city=Oslo")
        entry = engine.get(entry_id)
        assert isinstance(entry, FailureEntry)
        assert entry.error == "ECONNREFUSED"
        assert entry.context == "city=Oslo"
        assert engine.open_failure("weather_api").id == entry_id

    def test_resolution_turns_failure_into_pattern(self, engine: LearningEngine) -> None:
        """Resolving a failure keeps its id, subject and error."""
        entry_id = engine.record_failure("weather_api", "ECONNREFUSED")
        pattern = engine.record_resolution(entry_id, "Start the service")
        assert isinstance(pattern, PatternEntry)
        assert pattern.id == entry_id
        assert pattern.subject == "weather_api"
        assert pattern.error == "ECONNREFUSED"
        assert pattern.resolution == "Start the service"
        assert isinstance(engine.get(entry_id), PatternEntry)

    def test_resolving_pattern_replaces_text(self, engine: LearningEngine) -> None:
        """A second resolution only replaces the resolution text."""
        entry_id = engine.record_failure("weather_api", "ECONNREFUSED")
        engine.record_resolution(entry_id, "first")
        pattern = engine.record_resolution(entry_id, "second")
        assert pattern.resolution == "second"
        assert len(engine.get_patterns()) == 1

    def test_resolve_unknown_id(self, engine: LearningEngine) -> None:
        """Resolving an unknown id returns None and changes nothing."""
        assert engine.record_resolution("fail_0_missing", "x") is None
        assert engine.entries() == []

    def test_resolve_success_rejected(self, engine: LearningEngine) -> None:
        """Successes cannot be turned into patterns."""
        success_id = engine.record_success("weather_api")
        with pytest.raises(InvalidTransitionError):
            engine.record_resolution(success_id, "nope")
        assert isinstance(engine.get(success_id), SuccessEntry)

    def test_success_resolves_open_failure(self, engine: LearningEngine) -> None:
        """A success after a failure turns it into a pattern."""
        fail_id = engine.record_failure("weather_api", "timeout")
        engine.record_success("weather_api")
        pattern = engine.get(fail_id)
        assert isinstance(pattern, PatternEntry)
        assert pattern.resolution == "Succeeded with weather_api"
        assert pattern.use_count == 0
        assert engine.open_failure("weather_api") is None

    def test_success_for_other_subject_leaves_failure(self, engine: LearningEngine) -> None:
        """Only the same subject's success resolves a failure."""
        fail_id = engine.record_failure("weather_api", "timeout")
        engine.record_success("geo_api")
        assert isinstance(engine.get(fail_id), FailureEntry)

    def test_most_recent_failure_wins(self, engine: LearningEngine) -> None:
        """Only the newest failure is resolved; older ones stay as history."""
        older = engine.record_failure("weather_api", "timeout")
        newer = engine.record_failure("weather_api", "ECONNREFUSED")
        engine.record_success("weather_api")
        assert isinstance(engine.get(newer), PatternEntry)
        assert isinstance(engine.get(older), FailureEntry)
        assert engine.open_failure("weather_api") is None

    def test_success_counts_pattern_reuse(self, engine: LearningEngine) -> None:
        """Successes without an open failure count as reuse of patterns."""
        fail_id = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(fail_id, "Retry")
        engine.record_success("weather_api")
        engine.record_success("weather_api")
        pattern = engine.get(fail_id)
        assert pattern.use_count == 2
        assert pattern.last_used_at is not None

    def test_success_cap(self, temp_dir: Path) -> None:
        """Only the newest successes are kept."""
        engine = LearningEngine(temp_dir / "learnings.json", success_cap=3)
        ids = [engine.record_success(f"tool_{i}") for i in range(5)]
        kept = [e.id for e in engine.entries() if isinstance(e, SuccessEntry)]
        assert kept == ids[2:]

    def test_record_insight_with_context(self, engine: LearningEngine) -> None:
        """Insight context is appended to the text."""
        entry_id = engine.record_insight("Cache the token", "saw three 401s")
        entry = engine.get(entry_id)
        assert isinstance(entry, InsightEntry)
        assert entry.context == "Cache the token\n\nContext: saw three 401s"


class TestQueries:
    """Tests for find_relevant, summaries and crystallization queries."""

    def test_find_relevant_by_subject(self, engine: LearningEngine) -> None:
        """Subject filter returns that subject's patterns only."""
        a = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(a, "Retry")
        b = engine.record_failure("geo_api", "timeout")
        engine.record_resolution(b, "Retry later")
        engine.record_insight("General note")

        relevant = engine.find_relevant(subject="weather_api")
        assert [e.id for e in relevant] == [a]

    def test_find_relevant_by_error(self, engine: LearningEngine) -> None:
        """Error filter is a case-insensitive substring match."""
        a = engine.record_failure("weather_api", "Connection REFUSED on port 80")
        engine.record_resolution(a, "Start it")
        b = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(b, "Retry")
        relevant = engine.find_relevant(error_substring="connection refused")
        assert [e.id for e in relevant] == [a]

    def test_error_filter_keeps_insights(self, engine: LearningEngine) -> None:
        """Insights carry no error, so an error-only filter keeps them."""
        a = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(a, "Retry")
        b = engine.record_failure("weather_api", "ECONNRESET")
        engine.record_resolution(b, "Reconnect")
        insight = engine.record_insight("Prefer the mirror")

        assert [e.id for e in engine.find_relevant(error_substring="timeout")] == [insight, a]
        assert [e.id for e in engine.find_relevant("weather_api", "timeout")] == [a]

    def test_find_relevant_unfiltered(self, engine: LearningEngine) -> None:
        """Without filters, patterns and insights come back newest first."""
        a = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(a, "Retry")
        insight = engine.record_insight("General note")
        engine.record_failure("geo_api", "unresolved")
        assert [e.id for e in engine.find_relevant()] == [insight, a]

    def test_find_relevant_window(self, temp_dir: Path) -> None:
        """Results are capped at the relevant window."""
        engine = LearningEngine(temp_dir / "learnings.json", relevant_window=2)
        for i in range(4):
            engine.record_insight(f"note {i}")
        assert len(engine.find_relevant()) == 2

    def test_recent_failures_newest_first(self, engine: LearningEngine) -> None:
        """Unresolved failures are listed newest first."""
        first = engine.record_failure("a", "x")
        second = engine.record_failure("b", "y")
        assert [e.id for e in engine.get_recent_failures()] == [second, first]
        assert len(engine.get_recent_failures(limit=1)) == 1

    def test_summary(self, engine: LearningEngine) -> None:
        """The summary counts each entry kind."""
        a = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(a, "Retry")
        engine.record_failure("geo_api", "boom")
        engine.record_success("other")
        engine.record_insight("note")
        summary = engine.summary()
        assert (summary.patterns, summary.insights, summary.unresolved_failures, summary.successes) == (
            1,
            1,
            1,
            1,
        )
        assert str(summary) == "1 patterns, 1 insights, 1 unresolved failures, 1 successes"

    def test_crystallization_thresholds(self, engine: LearningEngine) -> None:
        """Candidates appear at three reuses and are due at five."""
        fail_id = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(fail_id, "Retry")
        for _ in range(3):
            engine.record_success("weather_api")
        assert [p.id for p in engine.crystallization_candidates()] == [fail_id]
        assert engine.due_for_crystallization() == []

        for _ in range(2):
            engine.record_success("weather_api")
        assert [p.id for p in engine.due_for_crystallization()] == [fail_id]


class TestCrystallizationMarks:
    """Tests for mark_crystallized and mark_crystallization_failed."""

    def _due_pattern(self, engine: LearningEngine) -> str:
        fail_id = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(fail_id, "Retry")
        for _ in range(5):
            engine.record_success("weather_api")
        return fail_id

    def test_mark_crystallized_once(self, engine: LearningEngine) -> None:
        """A pattern is crystallized at most once."""
        pattern_id = self._due_pattern(engine)
        assert engine.mark_crystallized(pattern_id, "learned-weather")
        assert not engine.mark_crystallized(pattern_id, "learned-weather-2")
        assert engine.get(pattern_id).crystallized_artifact_id == "learned-weather"
        assert engine.crystallization_candidates() == []
        assert engine.summary().crystallized == 1

    def test_crystallized_pattern_not_reused(self, engine: LearningEngine) -> None:
        """Crystallized patterns stop counting reuse."""
        pattern_id = self._due_pattern(engine)
        engine.mark_crystallized(pattern_id, "learned-weather")
        before = engine.get(pattern_id).use_count
        engine.record_success("weather_api")
        assert engine.get(pattern_id).use_count == before

    def test_mark_non_pattern_rejected(self, engine: LearningEngine) -> None:
        """Only patterns can be crystallized."""
        fail_id = engine.record_failure("weather_api", "timeout")
        with pytest.raises(InvalidTransitionError):
            engine.mark_crystallized(fail_id, "learned-weather")

    def test_failed_promotion_not_due(self, engine: LearningEngine) -> None:
        """A failed promotion keeps the pattern out of the due list."""
        pattern_id = self._due_pattern(engine)
        engine.mark_crystallization_failed(pattern_id, "BLOCKED: Script injection")
        assert engine.due_for_crystallization() == []
        assert engine.get(pattern_id).crystallization_error == "BLOCKED: Script injection"


class TestMaintenanceOperations:
    """Tests for auto_link and prune."""

    def test_auto_link_known_signatures(self, engine: LearningEngine) -> None:
        """Failures matching a known signature become patterns."""
        refused = engine.record_failure("weather_api", "connect ECONNREFUSED 127.0.0.1:80")
        unknown = engine.record_failure("geo_api", "something odd")
        linked = engine.auto_link()
        assert linked == [refused]
        pattern = engine.get(refused)
        assert isinstance(pattern, PatternEntry)
        assert pattern.resolution == match_signature("ECONNREFUSED").resolution
        assert isinstance(engine.get(unknown), FailureEntry)

    @pytest.mark.parametrize(
        "error,name",
        [
            ("HTTP 401 Unauthorized", "unauthorized"),
            ("429 Too Many Requests", "rate_limited"),
            ("ModuleNotFoundError: No module named 'x'", "missing_module"),
            ("JSONDecodeError: Expecting value", "bad_json"),
            ("PermissionError: [Errno 13]", "permission"),
        ],
    )
    def test_signature_matching(self, error: str, name: str) -> None:
        """Common error families are recognized."""
        assert match_signature(error).name == name

    def test_prune_stale_entries(self, engine: LearningEngine) -> None:
        """Entries older than the retention window are removed."""
        fail_id = engine.record_failure("weather_api", "timeout")
        insight_id = engine.record_insight("note")
        later = datetime.now(timezone.utc) + timedelta(days=31)
        removed = engine.prune(now=later)
        assert set(removed) == {fail_id, insight_id}
        assert engine.entries() == []

    def test_prune_keeps_recent(self, engine: LearningEngine) -> None:
        """Entries inside the window are kept."""
        engine.record_failure("weather_api", "timeout")
        assert engine.prune() == []
        assert len(engine.entries()) == 1

    def test_prune_keeps_crystallized(self, engine: LearningEngine) -> None:
        """Crystallized patterns survive any age."""
        fail_id = engine.record_failure("weather_api", "timeout")
        engine.record_resolution(fail_id, "Retry")
        engine.mark_crystallized(fail_id, "learned-weather")
        later = datetime.now(timezone.utc) + timedelta(days=365)
        assert engine.prune(now=later) == []
        assert engine.get(fail_id) is not None


class TestPersistence:
    """Tests for on-disk behaviour."""

    def test_entries_survive_reopen(self, engine: LearningEngine) -> None:
        """A new engine on the same file sees the same entries."""
        fail_id = engine.record_failure("weather_api", "timeout")
        reopened = LearningEngine(engine.path)
        assert reopened.get(fail_id) is not None
        assert reopened.reload() == 1

    def test_file_is_json_array(self, engine: LearningEngine) -> None:
        """The store is a JSON array tagged by type."""
        engine.record_failure("weather_api", "timeout")
        data = json.loads(engine.path.read_text())
        assert isinstance(data, list)
        assert data[0]["type"] == "failure"

    def test_corrupt_file_starts_empty(self, temp_dir: Path) -> None:
        """A malformed file is treated as empty and rewritten on next record."""
        path = temp_dir / "learnings.json"
        path.write_text("[{not json")
        engine = LearningEngine(path)
        assert engine.entries() == []
        engine.record_insight("fresh start")
        assert len(json.loads(path.read_text())) == 1

    def test_binary_file_starts_empty(self, temp_dir: Path) -> None:
        """A file that is not valid UTF-8 is treated as empty."""
        path = temp_dir / "learnings.json"
        path.write_bytes(b"\xff\xfe\x00garbage")
        engine = LearningEngine(path)
        assert engine.entries() == []
        assert engine.find_relevant(subject="weather_api") == []
        fail_id = engine.record_failure("weather_api", "timeout")
        assert [e["id"] for e in json.loads(path.read_text())] == [fail_id]

    def test_invalid_entries_skipped(self, temp_dir: Path) -> None:
        """Entries of unknown type are ignored."""
        path = temp_dir / "learnings.json"
        path.write_text(
            json.dumps(
                [
                    {"id": "x1", "type": "mystery"},
                    {"id": "i1", "type": "insight", "context": "kept"},
                ]
            )
        )
        engine = LearningEngine(path)
        assert [e.id for e in engine.entries()] == ["i1"]

    def test_concurrent_engines_lose_nothing(self, temp_dir: Path) -> None:
        """Writers on separate engines never overwrite each other."""
        path = temp_dir / "learnings.json"
        engines = [LearningEngine(path) for _ in range(4)]

        def writer(engine: LearningEngine, index: int) -> None:
            for n in range(5):
                engine.record_failure(f"tool_{index}", f"error {n}")

        threads = [threading.Thread(target=writer, args=(e, i)) for i, e in enumerate(engines)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(LearningEngine(path).entries()) == 20


class TestToolOutcomeObserver:
    """Tests for ToolOutcomeObserver."""

    def test_failure_then_success(self, engine: LearningEngine) -> None:
        """A failing call followed by a success produces a pattern."""
        observer = ToolOutcomeObserver(engine)
        fail_id = observer.after_tool_call("weather_api", error="timeout")
        assert observer.last_failure_id == fail_id

        observer.after_tool_call("weather_api")
        assert isinstance(engine.get(fail_id), PatternEntry)
        assert observer.last_failure_id is None

    def test_success_elsewhere_keeps_last_failure(self, engine: LearningEngine) -> None:
        """A success for another tool leaves the failure open."""
        observer = ToolOutcomeObserver(engine)
        fail_id = observer.after_tool_call("weather_api", error="timeout")
        observer.after_tool_call("geo_api")
        assert observer.last_failure_id == fail_id

    def test_own_tools_ignored(self, engine: LearningEngine) -> None:
        """Calls to the foundry's own tools are not recorded."""
        observer = ToolOutcomeObserver(engine)
        assert observer.after_tool_call("foundry_write_extension", error="boom") is None
        assert engine.entries() == []

    def test_agent_end_records_sequence(self, engine: LearningEngine) -> None:
        """A successful multi-tool session is kept as an insight."""
        observer = ToolOutcomeObserver(engine)
        tools = ["search", "fetch", "parse", "summarize", "store", "notify"]
        insight_id = observer.agent_end(True, tools)
        entry = engine.get(insight_id)
        assert entry.context == (
            "Successful tool sequence: search → fetch → parse → summarize → store"
        )

    @pytest.mark.parametrize("success,tools", [(False, ["a", "b", "c"]), (True, ["a", "b"])])
    def test_agent_end_skipped(self, engine: LearningEngine, success: bool, tools: list[str]) -> None:
        """Failed or short sessions record nothing."""
        observer = ToolOutcomeObserver(engine)
        assert observer.agent_end(success, tools) is None
        assert engine.entries() == []

    def test_agent_end_clears_last_failure(self, engine: LearningEngine) -> None:
        """Ending the session stops tracking its failure; the entry stays open."""
        observer = ToolOutcomeObserver(engine)
        fail_id = observer.after_tool_call("weather_api", error="timeout")
        observer.agent_end(False, ["weather_api"])
        assert observer.last_failure_id is None
        assert engine.get(fail_id).type == "failure"
