import json
import os
import tempfile
import unittest
from pathlib import Path

from session_distill import config
from session_distill.models import DistilledSession, FileMapResult, GitDiffResult, StatsResult
from session_distill.parsers.events import (
    SessionNotFoundError,
    enrich_session_summaries,
    list_sessions,
    parse_event,
    parse_link_event,
    read_distilled,
    read_links,
    read_session_events,
    write_distilled,
)


class EventParserTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.project_dir = Path(tmpdir.name)

    def _write_jsonl(self, name: str, lines: list) -> Path:
        path = config.sessions_dir(self.project_dir) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        rendered = [line if isinstance(line, str) else json.dumps(line) for line in lines]
        path.write_text("\n".join(rendered) + "\n", encoding="utf-8")
        return path

    def test_parse_event_skips_garbage(self) -> None:
        self.assertIsNone(parse_event("not json"))
        self.assertIsNone(parse_event(json.dumps({"t": 1})))
        self.assertIsNone(parse_event(json.dumps({"t": 1, "event": "NotAHook"})))

        event = parse_event(json.dumps({"t": 5, "event": "PreToolUse", "sid": "s", "data": {"tool_name": "Read"}}))
        self.assertIsNotNone(event)
        assert event is not None
        self.assertEqual(event.tool_name, "Read")

    def test_parse_link_event_validates_type_and_time(self) -> None:
        self.assertIsNone(parse_link_event(json.dumps({"t": 1, "type": "mystery"})))
        self.assertIsNone(parse_link_event(json.dumps({"t": "soon", "type": "stop", "agent_id": "a"})))
        self.assertIsNone(parse_link_event(json.dumps({"t": True, "type": "stop", "agent_id": "a"})))

        link = parse_link_event(json.dumps({"t": 1, "type": "msg_send", "from": "lead", "to": "alice"}))
        self.assertIsNotNone(link)
        assert link is not None
        self.assertEqual(link.type, "msg_send")
        self.assertEqual(link.from_, "lead")

    def test_read_session_events_missing_raises(self) -> None:
        with self.assertRaises(SessionNotFoundError) as ctx:
            read_session_events("missing", self.project_dir)
        self.assertEqual(ctx.exception.session_id, "missing")
        self.assertIsInstance(ctx.exception, FileNotFoundError)

    def test_read_session_events_skips_bad_lines(self) -> None:
        self._write_jsonl(
            "abc.jsonl",
            [
                {"t": 1, "event": "SessionStart", "sid": "abc"},
                "{broken",
                {"t": 2, "event": "Stop", "sid": "abc"},
            ],
        )
        events = read_session_events("abc", self.project_dir)
        self.assertEqual([e.event for e in events], ["SessionStart", "Stop"])

    def _write_bytes(self, name: str, content: bytes) -> None:
        path = config.sessions_dir(self.project_dir) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def test_invalid_utf8_line_does_not_discard_the_file(self) -> None:
        self._write_bytes(
            "bin.jsonl",
            b'{"t": 1, "event": "SessionStart", "sid": "bin"}\n'
            b'{"t": 2, "event": "\xff\xfe"}\n'
            b'{"t": 3, "event": "Stop", "sid": "bin"}\n',
        )
        events = read_session_events("bin", self.project_dir)
        self.assertEqual([e.t for e in events], [1, 3])

        self._write_bytes(
            config.LINKS_FILENAME,
            b'{"t": 1, "type": "stop", "agent_id": "a1"}\n\xff\xfe garbage\n',
        )
        self.assertEqual([link.t for link in read_links(self.project_dir)], [1])

    def test_read_links(self) -> None:
        self.assertEqual(read_links(self.project_dir), [])
        self._write_jsonl(
            config.LINKS_FILENAME,
            [
                {"t": 1, "type": "spawn", "parent_session": "abc", "agent_id": "a1", "agent_type": "builder"},
                {"t": 2, "type": "unknown"},
                {"t": 3, "type": "stop", "agent_id": "a1"},
            ],
        )
        links = read_links(self.project_dir)
        self.assertEqual([link.type for link in links], ["spawn", "stop"])

    def test_list_sessions_newest_first_and_skips_ghosts(self) -> None:
        self._write_jsonl(
            "older.jsonl",
            [
                {"t": 1000, "event": "SessionStart", "sid": "older", "data": {"source": "startup"}},
                {"t": 5000, "event": "SessionEnd", "sid": "older", "data": {"reason": "clear"}},
            ],
        )
        self._write_jsonl(
            "newer.jsonl",
            [
                {"t": 9000, "event": "SessionStart", "sid": "newer", "context": {"git_branch": "main"}},
                {"t": 9500, "event": "PreToolUse", "sid": "newer", "data": {"tool_name": "Read"}},
            ],
        )
        self._write_jsonl(
            "ghost.jsonl",
            [
                {"t": 20_000, "event": "ConfigChange", "sid": "ghost"},
                {"t": 20_001, "event": "Notification", "sid": "ghost"},
            ],
        )
        self._write_jsonl(config.LINKS_FILENAME, [{"t": 1, "type": "stop", "agent_id": "a"}])

        sessions = list_sessions(self.project_dir)

        self.assertEqual([s.session_id for s in sessions], ["newer", "older"])
        newer, older = sessions
        self.assertEqual(newer.status, "incomplete")
        self.assertIsNone(newer.end_time)
        self.assertEqual(newer.git_branch, "main")
        self.assertEqual(older.status, "complete")
        self.assertEqual(older.end_time, 5000)
        self.assertEqual(older.duration_ms, 4000)
        self.assertEqual(older.source, "startup")
        self.assertEqual(older.end_reason, "clear")
        self.assertEqual(older.event_count, 2)

    def test_list_sessions_without_capture_dir(self) -> None:
        self.assertEqual(list_sessions(self.project_dir / "nowhere"), [])

    def test_distilled_round_trip(self) -> None:
        session = DistilledSession(
            session_id="abc",
            stats=StatsResult(total_events=2),
            file_map=FileMapResult(),
            git_diff=GitDiffResult(),
        )
        path = write_distilled(session, self.project_dir)

        self.assertTrue(path.exists())
        payload = json.loads(path.read_text(encoding="utf-8"))
        self.assertNotIn("summary", payload)
        restored = read_distilled("abc", self.project_dir)
        self.assertIsNotNone(restored)
        assert restored is not None
        self.assertEqual(restored.to_json_dict(), session.to_json_dict())
        self.assertIsNone(read_distilled("other", self.project_dir))

    def test_corrupt_distilled_file_reads_as_missing(self) -> None:
        directory = config.distilled_dir(self.project_dir)
        directory.mkdir(parents=True)
        (directory / "abc.json").write_text("{not json", encoding="utf-8")
        self.assertIsNone(read_distilled("abc", self.project_dir))

    def test_enrich_session_summaries(self) -> None:
        transcript = self.project_dir / "transcript.jsonl"
        transcript.write_text(
            "\n".join(
                [
                    json.dumps({"type": "custom-title", "customTitle": "first"}),
                    json.dumps({"type": "custom-title", "customTitle": '"Auth &amp; login"'}),
                ]
            ),
            encoding="utf-8",
        )
        self._write_jsonl(
            "abc.jsonl",
            [
                {"t": 1000, "event": "SessionStart", "sid": "abc", "data": {"transcript_path": os.fspath(transcript)}},
                {"t": 2000, "event": "Stop", "sid": "abc"},
            ],
        )
        self._write_jsonl(
            config.LINKS_FILENAME,
            [
                {"t": 1, "type": "spawn", "parent_session": "abc", "agent_id": "a1", "agent_type": "builder"},
                {"t": 2, "type": "spawn", "parent_session": "abc", "agent_id": "a2", "agent_type": "builder"},
            ],
        )
        directory = config.distilled_dir(self.project_dir)
        directory.mkdir(parents=True)
        (directory / "abc.json").write_text('{"plan_drift": {}}', encoding="utf-8")

        enriched = enrich_session_summaries(list_sessions(self.project_dir), self.project_dir)

        self.assertEqual(len(enriched), 1)
        summary = enriched[0]
        self.assertEqual(summary.agent_count, 2)
        self.assertTrue(summary.is_distilled)
        self.assertTrue(summary.has_spec)
        self.assertEqual(summary.session_name, "Auth & login")


if __name__ == "__main__":
    unittest.main()
