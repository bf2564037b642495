import json
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from session_distill import config
from session_distill.parsers.events import SessionNotFoundError, read_distilled
from session_distill.services import git_diff
from session_distill.services.distill_service import distill_session
from session_distill.services.git_diff import GitDiffProvider, parse_numstat_output
from session_distill.services.journeys import JourneyLookupError, list_journeys, resolve_journey_id


def write_session(project_dir: Path, session_id: str, events: list[dict]) -> Path:
    path = config.sessions_dir(project_dir) / f"{session_id}.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(json.dumps(event) for event in events) + "\n", encoding="utf-8")
    return path


def session_events(start: int, source: str, prompt: str, end_reason: str = "other") -> list[dict]:
    return [
        {"t": start, "event": "SessionStart", "sid": "x", "data": {"source": source, "cwd": "/repo"}},
        {"t": start + 100, "event": "UserPromptSubmit", "sid": "x", "data": {"prompt": prompt}},
        {"t": start + 1000, "event": "SessionEnd", "sid": "x", "data": {"reason": end_reason}},
    ]


class DistillServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.project_dir = Path(tmpdir.name)

    def _write_edit_session(self) -> None:
        edit = {"tool_name": "Edit", "tool_use_id": "e1", "tool_input": {"file_path": str(self.project_dir / "src/a.py")}}
        write_session(
            self.project_dir,
            "sess-1",
            [
                {"t": 1_000, "event": "SessionStart", "sid": "sess-1", "context": {"model": "claude-sonnet-4-5"}},
                {"t": 1_200, "event": "UserPromptSubmit", "sid": "sess-1", "data": {"prompt": "/build specs/plan.md"}},
                {"t": 2_000, "event": "PreToolUse", "sid": "sess-1", "data": edit},
                {"t": 2_500, "event": "PostToolUse", "sid": "sess-1", "data": edit},
                {"t": 3_000, "event": "SessionEnd", "sid": "sess-1", "data": {"reason": "other"}},
            ],
        )

    def test_missing_session_raises(self) -> None:
        with self.assertRaises(SessionNotFoundError):
            distill_session("nope", self.project_dir)

    def test_distills_without_persisting_by_default(self) -> None:
        self._write_edit_session()

        session = distill_session("sess-1", self.project_dir)

        self.assertEqual(session.session_id, "sess-1")
        self.assertEqual(session.stats.tool_call_count, 1)
        self.assertEqual(session.stats.model, "claude-sonnet-4-5")
        self.assertIsNone(session.plan_drift)
        self.assertIsNone(read_distilled("sess-1", self.project_dir))

    def test_persist_writes_distilled_json(self) -> None:
        self._write_edit_session()

        distill_session("sess-1", self.project_dir, persist=True)

        stored = read_distilled("sess-1", self.project_dir)
        self.assertIsNotNone(stored)
        assert stored is not None
        self.assertEqual(stored.stats.tool_call_count, 1)
        raw = json.loads((config.distilled_dir(self.project_dir) / "sess-1.json").read_text(encoding="utf-8"))
        self.assertEqual(raw["session_id"], "sess-1")

    def test_plan_file_is_read_relative_to_project(self) -> None:
        self._write_edit_session()
        plan = self.project_dir / "specs" / "plan.md"
        plan.parent.mkdir(parents=True)
        plan.write_text("## Files\n- `src/a.py`\n- `src/b.py`\n", encoding="utf-8")

        session = distill_session("sess-1", self.project_dir)

        self.assertIsNotNone(session.plan_drift)
        assert session.plan_drift is not None
        self.assertEqual(session.plan_drift.actual_files, ["src/a.py"])
        self.assertEqual(session.plan_drift.missing_files, ["src/b.py"])


class JourneyServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.project_dir = Path(tmpdir.name)
        write_session(self.project_dir, "aaaa1111-first", session_events(1_000, "startup", "/prime", "clear"))
        write_session(self.project_dir, "bbbb2222-second", session_events(3_000, "clear", "/build specs/auth.md"))
        write_session(self.project_dir, "aaaa1199-later", session_events(100_000, "startup", "/review"))

    def test_journeys_chain_continuations_newest_first(self) -> None:
        journeys = list_journeys(self.project_dir)

        self.assertEqual([journey.id for journey in journeys], ["aaaa1199", "aaaa1111"])
        chained = journeys[1]
        self.assertEqual(
            [phase.session_id for phase in chained.phases],
            ["aaaa1111-first", "bbbb2222-second"],
        )
        self.assertEqual(chained.spec_ref, "specs/auth.md")
        self.assertEqual(len(chained.transitions), 1)

    def test_resolve_by_prefix_and_latest(self) -> None:
        self.assertEqual(resolve_journey_id("aaaa1111", False, self.project_dir).id, "aaaa1111")
        self.assertEqual(resolve_journey_id(None, True, self.project_dir).id, "aaaa1199")

    def test_resolve_by_session_prefix(self) -> None:
        self.assertEqual(resolve_journey_id("bbbb", False, self.project_dir).id, "aaaa1111")

    def test_ambiguous_and_missing_ids(self) -> None:
        with self.assertRaises(JourneyLookupError) as ctx:
            resolve_journey_id("aaaa11", False, self.project_dir)
        self.assertTrue(ctx.exception.ambiguous)

        with self.assertRaises(JourneyLookupError) as ctx:
            resolve_journey_id("zzzz", False, self.project_dir)
        self.assertFalse(ctx.exception.ambiguous)

    def test_empty_project_has_no_journeys(self) -> None:
        with tempfile.TemporaryDirectory() as empty:
            self.assertEqual(list_journeys(empty), [])
            with self.assertRaises(JourneyLookupError):
                resolve_journey_id(None, True, empty)


class GitDiffTests(unittest.TestCase):
    def test_parse_numstat_output(self) -> None:
        changes = parse_numstat_output("3\t0\tsrc/new.py\n0\t4\tsrc/old.py\n2\t1\tsrc/a.py\n-\t-\timg.png\nbad line\n")

        self.assertEqual(
            [(c.file_path, c.status, c.additions, c.deletions) for c in changes],
            [
                ("src/new.py", "added", 3, 0),
                ("src/old.py", "deleted", 0, 4),
                ("src/a.py", "modified", 2, 1),
                ("img.png", "modified", 0, 0),
            ],
        )

    def test_git_failure_degrades_to_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            provider = GitDiffProvider(Path(tmp) / "missing")
            self.assertIsNone(provider._run("status"))
            self.assertEqual(provider.capture_unified_diff("abc123", ["a.py"]), {})

    def test_undecodable_git_output_is_replaced(self) -> None:
        raw = b"--- a/a.py\n+++ b/a.py\n@@ -1 +1 @@\n-caf\xe9\n+cafe\n"

        def fake_run(cmd, **kwargs):
            stdout = raw.decode("utf-8", errors=kwargs.get("errors") or "strict")
            return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

        with patch.object(git_diff.subprocess, "run", side_effect=fake_run):
            diffs = GitDiffProvider("/repo").capture_unified_diff("abc123", ["a.py"])

        self.assertIn("+cafe", diffs["a.py"])
        self.assertIn("-caf\ufffd", diffs["a.py"])


if __name__ == "__main__":
    unittest.main()
