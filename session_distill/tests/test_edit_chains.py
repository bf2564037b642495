import unittest

from session_distill.distill.backtracks import extract_backtracks
from session_distill.distill.edit_chains import extract_edit_chains, group_and_filter_edit_events
from session_distill.models import StoredEvent, TranscriptReasoning


def _event(t: int, kind: str, tool_name: str, tool_use_id: str, file_path: str, **extra) -> StoredEvent:
    tool_input = {"file_path": file_path}
    tool_input.update(extra.pop("tool_input", {}))
    data = {"tool_name": tool_name, "tool_use_id": tool_use_id, "tool_input": tool_input}
    data.update(extra)
    return StoredEvent(t=t, event=kind, sid="root", data=data)


class EditChainTests(unittest.TestCase):
    def _failed_then_retried(self) -> list[StoredEvent]:
        return [
            _event(
                1000,
                "PreToolUse",
                "Edit",
                "edit-1",
                "/repo/a.py",
                tool_input={"old_string": "foo", "new_string": "bar"},
            ),
            _event(1100, "PostToolUseFailure", "Edit", "edit-1", "/repo/a.py", error="old_string not found"),
            _event(
                2000,
                "PreToolUse",
                "Edit",
                "edit-2",
                "/repo/a.py",
                tool_input={"old_string": "foo()", "new_string": "bar()\nbaz()"},
            ),
            _event(2100, "PostToolUse", "Edit", "edit-2", "/repo/a.py"),
        ]

    def test_failed_edit_and_retry(self) -> None:
        events = self._failed_then_retried()
        backtracks = extract_backtracks(events)

        self.assertEqual(len(backtracks), 1)
        self.assertEqual(backtracks[0].type, "failure_retry")
        self.assertEqual(backtracks[0].tool_use_ids, ["edit-1", "edit-2"])

        result = extract_edit_chains(events, [], backtracks)

        self.assertEqual(len(result.chains), 1)
        chain = result.chains[0]
        self.assertEqual(chain.file_path, "/repo/a.py")
        self.assertEqual([step.outcome for step in chain.steps], ["failure", "success"])
        self.assertEqual(chain.total_edits, 2)
        self.assertEqual(chain.total_failures, 1)
        self.assertEqual(chain.abandoned_edit_ids, ["edit-1"])
        self.assertEqual(chain.surviving_edit_ids, ["edit-2"])
        self.assertEqual(chain.effort_ms, 1000)
        self.assertTrue(chain.has_backtrack)
        self.assertEqual(chain.steps[0].error_preview, "old_string not found")
        self.assertEqual(chain.steps[0].backtrack_type, "failure_retry")
        self.assertEqual(chain.steps[1].new_string_lines, 2)

    def test_reasoning_is_attached_to_steps(self) -> None:
        reasoning = [
            TranscriptReasoning(
                t=1900,
                thinking="The old string must include the call parens",
                tool_use_id="edit-2",
                tool_name="Edit",
                intent_hint="debugging",
            )
        ]
        result = extract_edit_chains(self._failed_then_retried(), reasoning, [])

        step = result.chains[0].steps[1]
        self.assertEqual(step.thinking_preview, "The old string must include the call parens")
        self.assertEqual(step.thinking_intent, "debugging")
        self.assertFalse(result.chains[0].has_backtrack)

    def test_read_only_files_are_dropped(self) -> None:
        events = [
            _event(100, "PreToolUse", "Read", "r1", "/repo/readme.md"),
            _event(200, "PreToolUse", "Read", "r2", "/repo/b.py"),
            _event(300, "PreToolUse", "Edit", "e1", "/repo/b.py"),
        ]
        grouped = group_and_filter_edit_events(events)

        self.assertEqual([file_path for file_path, _ in grouped], ["/repo/b.py"])
        # A read before the first edit is exploration, not recovery.
        self.assertEqual([e.tool_use_id for e in grouped[0][1]], ["e1"])

    def test_read_shortly_after_failure_is_kept(self) -> None:
        events = [
            _event(100, "PreToolUse", "Edit", "e1", "/repo/b.py"),
            _event(150, "PostToolUseFailure", "Edit", "e1", "/repo/b.py", error="old_string not found"),
            _event(200, "PreToolUse", "Read", "r1", "/repo/b.py"),
        ]
        grouped = group_and_filter_edit_events(events)
        self.assertEqual([e.tool_use_id for e in grouped[0][1]], ["e1", "e1", "r1"])

        # Without a failure, a trailing read is dropped.
        grouped = group_and_filter_edit_events([events[0], events[2]])
        self.assertEqual([e.tool_use_id for e in grouped[0][1]], ["e1"])

    def test_failure_outside_recent_window_does_not_keep_read(self) -> None:
        events = [
            _event(100, "PreToolUse", "Edit", "e1", "/repo/b.py"),
            _event(150, "PostToolUseFailure", "Edit", "e1", "/repo/b.py"),
            _event(200, "PreToolUse", "Edit", "e2", "/repo/b.py"),
            _event(300, "PreToolUse", "Edit", "e3", "/repo/b.py"),
            _event(400, "PreToolUse", "Edit", "e4", "/repo/b.py"),
            _event(500, "PreToolUse", "Read", "r1", "/repo/b.py"),
        ]
        grouped = group_and_filter_edit_events(events)

        self.assertNotIn("r1", [e.tool_use_id for e in grouped[0][1]])

    def test_read_between_edits_is_kept(self) -> None:
        events = [
            _event(100, "PreToolUse", "Edit", "e1", "/repo/b.py"),
            _event(200, "PreToolUse", "Read", "r1", "/repo/b.py"),
            _event(300, "PreToolUse", "Edit", "e2", "/repo/b.py"),
        ]
        result = extract_edit_chains(events, [], [])

        chain = result.chains[0]
        self.assertEqual([step.outcome for step in chain.steps], ["success", "info", "success"])
        self.assertEqual(chain.total_reads, 1)
        self.assertEqual(chain.total_edits, 2)

    def test_chains_sorted_by_activity(self) -> None:
        events = [
            _event(100, "PreToolUse", "Write", "w1", "/repo/quiet.py"),
            _event(200, "PreToolUse", "Edit", "e1", "/repo/busy.py"),
            _event(300, "PreToolUse", "Edit", "e2", "/repo/busy.py"),
        ]
        result = extract_edit_chains(events, [], [])
        self.assertEqual([chain.file_path for chain in result.chains], ["/repo/busy.py", "/repo/quiet.py"])


if __name__ == "__main__":
    unittest.main()
