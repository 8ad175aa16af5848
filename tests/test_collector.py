"""Tests for evidence collection."""

import subprocess
import sys
from datetime import date
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import CORRECTION_SESSION, TODAY

from reflect import collector
from reflect.collector import (
    TRUNCATION_NOTE,
    available_session_dates,
    collect_context,
    collect_for_date,
    collect_from_command,
    collect_from_sources,
    collect_transcripts,
    lookback_dates,
    pack_sessions,
)
from reflect.models import SESSION_SEPARATOR, ContextSource, SessionRecord

YESTERDAY_FILE = "2026-02-12T10-00-00-000Z_abc.jsonl"

CHATTY_SESSION = [
    ("user", "Please rename it"),
    ("user", "Again, the other one"),
    ("assistant", "Renamed"),
]


def collect(sessions_dir, max_bytes=100_000, lookback_days=1):
    return collect_transcripts(lookback_days, max_bytes, sessions_dir.root, today=TODAY)


class TestCollectTranscripts:
    def test_collects_yesterdays_session(self, sessions_dir):
        sessions_dir("test-project", YESTERDAY_FILE, CORRECTION_SESSION)
        bundle = collect(sessions_dir)
        assert bundle.sessions_scanned == 1
        assert bundle.sessions_included == 1
        assert "No, wrong file" in bundle.text
        assert "### Session: test-project [2026-02-12 10-00-00]" in bundle.text

    def test_header_reports_counts(self, sessions_dir):
        sessions_dir("test-project", YESTERDAY_FILE, CORRECTION_SESSION)
        sessions_dir("test-project", "2026-02-12T11-00-00-000Z_b.jsonl", [("user", "hi")])
        bundle = collect(sessions_dir)
        assert bundle.text.startswith(
            "# Session Transcripts\n"
            "# Sessions scanned: 2, 1 with substantive conversation, 1 included\n"
            "# Total user messages: 2\n\n"
        )

    def test_short_sessions_are_not_substantive(self, sessions_dir):
        sessions_dir("test-project", YESTERDAY_FILE, [("user", "hi"), ("assistant", "hello")])
        bundle = collect(sessions_dir)
        assert bundle.sessions_scanned == 1
        assert bundle.sessions_included == 0
        assert bundle.text == ""

    def test_sessions_without_user_turns_are_skipped(self, sessions_dir):
        sessions_dir("test-project", YESTERDAY_FILE, [("assistant", "a"), ("assistant", "b"), ("assistant", "c")])
        assert collect(sessions_dir).sessions_included == 0

    def test_old_sessions_are_not_scanned(self, sessions_dir):
        sessions_dir("test-project", "2026-02-10T10-00-00-000Z_old.jsonl", CORRECTION_SESSION)
        bundle = collect(sessions_dir)
        assert bundle.sessions_scanned == 0
        assert bundle.text == ""

    def test_todays_sessions_are_not_scanned(self, sessions_dir):
        sessions_dir("test-project", "2026-02-13T12-00-00-000Z_now.jsonl", CORRECTION_SESSION)
        assert collect(sessions_dir).sessions_scanned == 0

    def test_next_day_early_session_counts(self, sessions_dir):
        sessions_dir("test-project", "2026-02-13T05-00-00-000Z_late.jsonl", CORRECTION_SESSION)
        assert collect(sessions_dir).sessions_included == 1

    def test_lookback_widens_window(self, sessions_dir):
        sessions_dir("test-project", "2026-02-10T10-00-00-000Z_old.jsonl", CORRECTION_SESSION)
        assert collect(sessions_dir, lookback_days=3).sessions_included == 1

    def test_noise_directories_are_skipped(self, sessions_dir):
        sessions_dir("--private-var-folders-xy-T--", YESTERDAY_FILE, CORRECTION_SESSION)
        assert collect(sessions_dir).sessions_scanned == 0

    def test_non_session_files_are_ignored(self, sessions_dir):
        sessions_dir("test-project", "2026-02-12T10-00-00-000Z_abc.json", CORRECTION_SESSION)
        assert collect(sessions_dir).sessions_scanned == 0

    def test_sessions_across_projects(self, sessions_dir):
        sessions_dir("project-a", YESTERDAY_FILE, CORRECTION_SESSION)
        sessions_dir("project-b", YESTERDAY_FILE, CORRECTION_SESSION)
        bundle = collect(sessions_dir)
        assert bundle.sessions_included == 2
        assert "project-a" in bundle.text
        assert "project-b" in bundle.text

    def test_higher_user_share_comes_first(self, sessions_dir):
        sessions_dir("test-project", "2026-02-12T09-00-00-000Z_a.jsonl", CORRECTION_SESSION)
        sessions_dir("test-project", "2026-02-12T10-00-00-000Z_b.jsonl", CHATTY_SESSION)
        bundle = collect(sessions_dir)
        assert bundle.text.index("Again, the other one") < bundle.text.index("No, wrong file")
        assert [s.time_label for s in bundle.sessions] == ["2026-02-12 10-00-00", "2026-02-12 09-00-00"]

    def test_oversized_session_is_skipped_but_smaller_fit(self, sessions_dir):
        sessions_dir("test-project", "2026-02-12T09-00-00-000Z_big.jsonl", [
            ("user", "x" * 5000), ("user", "more"), ("user", "still more"),
        ])
        sessions_dir("test-project", "2026-02-12T10-00-00-000Z_small.jsonl", CORRECTION_SESSION)
        bundle = collect(sessions_dir, max_bytes=1000)
        assert bundle.sessions_included == 1
        assert "No, wrong file" in bundle.text
        assert "x" * 5000 not in bundle.text
        assert "2 with substantive conversation, 1 included" in bundle.text
        assert "# Total user messages: 5" in bundle.text

    def test_missing_sessions_dir(self, tmp_path):
        bundle = collect_transcripts(1, 1000, tmp_path / "missing", today=TODAY)
        assert bundle.text == ""
        assert bundle.sessions_scanned == 0


class TestPackSessions:
    def record(self, user_turns, total_turns, label):
        return SessionRecord(user_turns, total_turns, f"### Session: p [{label}]\n", "p", label)

    def test_ties_keep_scan_order(self):
        first = self.record(1, 3, "first")
        second = self.record(1, 3, "second")
        bundle = pack_sessions([first, second], 2, 10_000)
        assert bundle.sessions == [first, second]

    def test_raw_user_turns_break_ratio_ties(self):
        small = self.record(1, 3, "small")
        large = self.record(2, 6, "large")
        assert pack_sessions([small, large], 2, 10_000).sessions == [large, small]

    def test_no_sessions(self):
        bundle = pack_sessions([], 4, 10_000)
        assert bundle.text == ""
        assert bundle.sessions_scanned == 4

    def test_included_sessions_fit_budget(self):
        sizes = [120, 300, 80, 450, 200, 60, 310]
        sessions = [
            SessionRecord(1 + i % 3, 4, f"s{i}".ljust(size, "x"), "p", f"s{i}")
            for i, size in enumerate(sizes)
        ]
        bundle = pack_sessions(sessions, len(sessions), 700)

        packed = sum(s.size + len(SESSION_SEPARATOR) for s in bundle.sessions)
        assert 0 < bundle.sessions_included < len(sessions)
        assert packed <= 700
        assert bundle.text.endswith("".join(s.transcript + SESSION_SEPARATOR for s in bundle.sessions))


class TestDates:
    def test_lookback_dates_end_yesterday(self):
        assert lookback_dates(3, today=TODAY) == [date(2026, 2, 12), date(2026, 2, 11), date(2026, 2, 10)]

    def test_collect_for_date(self, sessions_dir):
        sessions_dir("test-project", "2026-02-11T10-00-00-000Z_a.jsonl", CORRECTION_SESSION)
        sessions_dir("test-project", YESTERDAY_FILE, CHATTY_SESSION)
        bundle = collect_for_date(date(2026, 2, 11), 100_000, sessions_dir.root)
        assert bundle.sessions_included == 1
        assert "No, wrong file" in bundle.text

    def test_available_session_dates(self, sessions_dir):
        sessions_dir("project-a", YESTERDAY_FILE, CORRECTION_SESSION)
        sessions_dir("project-b", "2026-02-10T10-00-00-000Z_a.jsonl", CORRECTION_SESSION)
        sessions_dir("project-b", "notes.jsonl", CORRECTION_SESSION)
        sessions_dir("--var-folders-tmp--", "2026-01-01T10-00-00-000Z_a.jsonl", CORRECTION_SESSION)
        assert available_session_dates(sessions_dir.root) == ["2026-02-10", "2026-02-12"]


def completed(stdout):
    return subprocess.CompletedProcess(args="cmd", returncode=0, stdout=stdout, stderr="")


class TestCollectFromCommand:
    def test_uses_stdout_and_counts_sessions(self, monkeypatch):
        run = MagicMock(return_value=completed("### Session: a\nhi\n### Session: b\nyo\n"))
        monkeypatch.setattr(collector.subprocess, "run", run)
        bundle = collect_from_command("export-sessions --days {lookbackDays}", 3, 10_000)
        assert bundle.sessions_included == 2
        assert bundle.sessions_scanned == 2
        assert run.call_args.args[0] == "export-sessions --days 3"
        assert run.call_args.kwargs["timeout"] == collector.COMMAND_TIMEOUT

    def test_output_without_headers_counts_as_one(self, monkeypatch):
        monkeypatch.setattr(collector.subprocess, "run", MagicMock(return_value=completed("plain text")))
        assert collect_from_command("cat log", 1, 10_000).sessions_included == 1

    def test_output_is_clipped(self, monkeypatch):
        monkeypatch.setattr(collector.subprocess, "run", MagicMock(return_value=completed("z" * 50)))
        bundle = collect_from_command("cat log", 1, 10)
        assert bundle.text == "z" * 10 + TRUNCATION_NOTE

    def test_failure_returns_empty_bundle(self, monkeypatch):
        run = MagicMock(side_effect=subprocess.CalledProcessError(1, "cmd"))
        monkeypatch.setattr(collector.subprocess, "run", run)
        bundle = collect_from_command("false", 1, 10_000)
        assert bundle.text == ""
        assert bundle.sessions_included == 0

    def test_timeout_returns_empty_bundle(self, monkeypatch):
        run = MagicMock(side_effect=subprocess.TimeoutExpired("cmd", 60))
        monkeypatch.setattr(collector.subprocess, "run", run)
        assert collect_from_command("sleep 100", 1, 10_000).text == ""


class TestCollectContext:
    @pytest.fixture
    def notes(self, tmp_path):
        notes = tmp_path / "notes"
        notes.mkdir()
        (notes / "memory-2026-02-12.md").write_text("fresh note")
        (notes / "memory-2026-02-01.md").write_text("stale note")
        return notes

    def test_files_glob_respects_lookback(self, notes):
        source = ContextSource(type="files", label="Memory", paths=[str(notes / "memory-*.md")])
        text = collect_context([source], 1, today=TODAY)
        assert text == "## Memory\n### memory-2026-02-12.md\nfresh note"

    def test_plain_file_path(self, tmp_path):
        path = tmp_path / "MEMORY.md"
        path.write_text("remember this")
        text = collect_context([ContextSource(type="files", paths=[str(path)])], 1, today=TODAY)
        assert text == "## files\n### MEMORY.md\nremember this"

    def test_missing_file_is_left_out(self, tmp_path):
        source = ContextSource(type="files", paths=[str(tmp_path / "nope.md")])
        assert collect_context([source], 1, today=TODAY) == ""

    def test_files_newest_name_first_until_cap(self, tmp_path):
        (tmp_path / "a.md").write_text("a" * 60)
        (tmp_path / "b.md").write_text("b" * 60)
        source = ContextSource(type="files", label="Notes", paths=[str(tmp_path / "*.md")], max_bytes=100)
        text = collect_context([source], 1, today=TODAY)
        assert "b" * 60 in text
        assert "a" * 60 not in text

    def test_command_source(self, monkeypatch):
        run = MagicMock(return_value=completed("abc123 fix bug\n"))
        monkeypatch.setattr(collector.subprocess, "run", run)
        source = ContextSource(type="command", label="Git log", command="git log --since={lookbackDays}.days")
        assert collect_context([source], 2, today=TODAY) == "## Git log\nabc123 fix bug\n"
        assert run.call_args.args[0] == "git log --since=2.days"

    def test_url_source(self, monkeypatch):
        get = MagicMock(return_value=MagicMock(is_success=True, text="remote rules"))
        monkeypatch.setattr(collector.httpx, "get", get)
        source = ContextSource(type="url", label="Team rules", url="https://example.com/rules?days={lookbackDays}")
        assert collect_context([source], 1, today=TODAY) == "## Team rules\nremote rules"
        assert get.call_args.args[0] == "https://example.com/rules?days=1"

    def test_url_error_status_is_left_out(self, monkeypatch):
        get = MagicMock(return_value=MagicMock(is_success=False, text="Not Found"))
        monkeypatch.setattr(collector.httpx, "get", get)
        assert collect_context([ContextSource(type="url", url="https://example.com")], 1, today=TODAY) == ""

    def test_failing_sources_do_not_block_others(self, monkeypatch, notes):
        monkeypatch.setattr(collector.httpx, "get", MagicMock(side_effect=httpx.ConnectError("refused")))
        monkeypatch.setattr(
            collector.subprocess, "run", MagicMock(side_effect=subprocess.CalledProcessError(1, "cmd"))
        )
        sources = [
            ContextSource(type="url", label="Remote", url="https://example.com"),
            ContextSource(type="command", label="Broken", command="false"),
            ContextSource(type="files", label="Memory", paths=[str(notes / "memory-*.md")]),
        ]
        assert collect_context(sources, 1, today=TODAY) == "## Memory\n### memory-2026-02-12.md\nfresh note"

    def test_sources_are_separated(self, monkeypatch, notes):
        monkeypatch.setattr(collector.subprocess, "run", MagicMock(return_value=completed("out")))
        sources = [
            ContextSource(type="command", label="One", command="echo out"),
            ContextSource(type="command", label="Two", command="echo out"),
        ]
        assert collect_context(sources, 1, today=TODAY) == "## One\nout\n\n---\n\n## Two\nout"

    def test_source_without_anything_to_read(self):
        assert collect_context([ContextSource(type="command")], 1, today=TODAY) == ""

    def test_each_source_is_clipped(self, monkeypatch):
        monkeypatch.setattr(collector.subprocess, "run", MagicMock(return_value=completed("q" * 30)))
        source = ContextSource(type="command", label="Big", command="yes", max_bytes=5)
        assert collect_context([source], 1, today=TODAY) == "## Big\nqqqqq" + TRUNCATION_NOTE


class TestCollectFromSources:
    def test_counts_file_headers(self, tmp_path):
        (tmp_path / "day-1.md").write_text("one")
        (tmp_path / "day-2.md").write_text("two")
        source = ContextSource(type="files", label="Logs", paths=[str(tmp_path / "day-*.md")])
        bundle = collect_from_sources([source], 1, today=TODAY)
        assert bundle.sessions_included == 2
        assert "one" in bundle.text and "two" in bundle.text

    def test_empty_sources(self):
        bundle = collect_from_sources([], 1, today=TODAY)
        assert bundle.text == ""


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestUndecodableCommandOutput:
    def test_evidence_command(self):
        bundle = collect_from_command("printf '### Session: x\\n\\377\\376 bad bytes\\n'", 1, 10_000)
        assert bundle.sessions_included == 1
        assert "\ufffd" in bundle.text
        assert "bad bytes" in bundle.text

    def test_context_command(self):
        source = ContextSource(type="command", label="Raw", command="printf 'ok \\377'")
        assert collect_context([source], 1, today=TODAY) == "## Raw\nok \ufffd"
