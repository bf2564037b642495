import unittest

from session_distill.distill.file_map import extract_bash_file_paths, extract_file_map
from session_distill.distill.stats import (
    estimate_cost_from_tokens,
    extract_event_token_usage,
    extract_model,
    extract_stats,
)
from session_distill.distill.utils import compute_effective_duration
from session_distill.models import StoredEvent


def _tool(t: int, kind: str, tool_name: str, tool_use_id: str, **data) -> StoredEvent:
    tool_input = data.pop("tool_input", {})
    return StoredEvent(
        t=t,
        event=kind,
        data={"tool_name": tool_name, "tool_use_id": tool_use_id, "tool_input": tool_input, **data},
    )


class StatsTests(unittest.TestCase):
    def _events(self) -> list[StoredEvent]:
        return [
            StoredEvent(t=0, event="SessionStart", context={"model": "claude-sonnet-4-5-20250929"}),
            _tool(1_000, "PreToolUse", "Read", "r1", tool_input={"file_path": "/repo/a.py"}),
            _tool(2_000, "PreToolUse", "Edit", "e1", tool_input={"file_path": "/repo/a.py"}),
            _tool(2_100, "PostToolUseFailure", "Edit", "e1", tool_input={"file_path": "/repo/a.py"}),
            _tool(3_000, "PostToolUseFailure", "Bash", "b1", is_interrupt=True),
        ]

    def test_tallies_tools_and_failures(self) -> None:
        stats = extract_stats(self._events())

        self.assertEqual(stats.total_events, 5)
        self.assertEqual(stats.duration_ms, 3_000)
        self.assertEqual(stats.tools_by_name, {"Read": 1, "Edit": 1})
        self.assertEqual(stats.tool_call_count, 2)
        self.assertEqual(stats.failure_count, 1)
        self.assertEqual(stats.failures_by_tool, {"Edit": 1})
        self.assertAlmostEqual(stats.failure_rate, 0.5)
        self.assertEqual(stats.unique_files, ["/repo/a.py"])
        self.assertEqual(stats.model, "claude-sonnet-4-5-20250929")
        self.assertEqual(stats.events_by_type["PreToolUse"], 2)

    def test_heuristic_cost_when_no_token_usage(self) -> None:
        cost = extract_stats(self._events()).cost_estimate

        self.assertIsNotNone(cost)
        assert cost is not None
        self.assertTrue(cost.is_estimated)
        self.assertEqual(cost.estimated_input_tokens, 2_500)
        self.assertEqual(cost.estimated_output_tokens, 400)
        self.assertAlmostEqual(cost.estimated_cost_usd, 0.0135)

    def test_empty_session(self) -> None:
        stats = extract_stats([])
        self.assertEqual(stats.total_events, 0)
        self.assertIsNone(stats.cost_estimate)
        self.assertEqual(stats.failure_rate, 0.0)

    def test_token_cost(self) -> None:
        cost = estimate_cost_from_tokens("claude-opus-4-1", 1_000_000, 100_000)
        self.assertIsNotNone(cost)
        assert cost is not None
        self.assertAlmostEqual(cost.estimated_cost_usd, 22.5)
        self.assertFalse(cost.is_estimated)
        self.assertIsNone(cost.cache_read_tokens)
        self.assertIsNone(estimate_cost_from_tokens("gpt-4o", 10, 10))

    def test_event_token_usage(self) -> None:
        events = [
            StoredEvent(t=1, event="Stop", data={"usage": {"input_tokens": 10, "output_tokens": 5}}),
            StoredEvent(t=2, event="Stop", data={"token_usage": {"input_tokens": 3, "cache_read_tokens": 7}}),
            StoredEvent(t=3, event="Stop", data={"usage": {"input_tokens": 0, "output_tokens": 0}}),
        ]
        usage = extract_event_token_usage(events)
        self.assertIsNotNone(usage)
        assert usage is not None
        self.assertEqual((usage.input_tokens, usage.output_tokens, usage.cache_read_tokens), (13, 5, 7))
        self.assertIsNone(extract_event_token_usage(events[2:]))

    def test_model_falls_back_to_config_change(self) -> None:
        events = [StoredEvent(t=1, event="ConfigChange", data={"config": {"model": "claude-haiku-4-5"}})]
        self.assertEqual(extract_model(events), "claude-haiku-4-5")
        self.assertIsNone(extract_model([StoredEvent(t=1, event="Stop")]))


class EffectiveDurationTests(unittest.TestCase):
    def test_idle_gaps_are_removed(self) -> None:
        duration = compute_effective_duration([0, 1_000, 601_000, 602_000])

        self.assertEqual(duration.wall_duration_ms, 602_000)
        self.assertEqual(duration.idle_gaps_ms, 600_000)
        self.assertEqual(duration.effective_duration_ms, 2_000)

    def test_degenerate_inputs(self) -> None:
        self.assertEqual(compute_effective_duration([]).effective_duration_ms, 0)
        self.assertEqual(compute_effective_duration([42]).effective_end_t, 42)


class FileMapTests(unittest.TestCase):
    def test_counts_per_file(self) -> None:
        events = [
            _tool(1, "PreToolUse", "Read", "r1", tool_input={"file_path": "/repo/a.py"}),
            _tool(2, "PreToolUse", "Edit", "e1", tool_input={"file_path": "/repo/a.py"}),
            _tool(3, "PostToolUseFailure", "Edit", "e1", tool_input={"file_path": "/repo/a.py"}),
            _tool(4, "PreToolUse", "Grep", "g1", tool_input={"path": "/repo/src"}),
            _tool(5, "PreToolUse", "Bash", "b1", tool_input={"command": "mkdir -p build/out && touch notes.txt"}),
            _tool(6, "PreToolUse", "Write", "w1", tool_input={"file_path": "/repo/new.py"}),
        ]

        file_map = extract_file_map(events)
        by_path = {entry.file_path: entry for entry in file_map.files}

        self.assertEqual(file_map.files[0].file_path, "/repo/a.py")
        a = by_path["/repo/a.py"]
        self.assertEqual((a.reads, a.edits, a.errors), (1, 1, 1))
        self.assertEqual(a.tool_use_ids, ["r1", "e1", "e1"])
        self.assertEqual(by_path["/repo/new.py"].writes, 1)
        self.assertEqual(by_path["/repo/src"].source, "tool")
        self.assertEqual(by_path["build/out"].source, "bash")
        self.assertEqual(by_path["notes.txt"].source, "bash")

    def test_bash_patterns(self) -> None:
        self.assertEqual(extract_bash_file_paths("echo hi > out.log"), ["out.log"])
        self.assertEqual(extract_bash_file_paths("ls -la"), [])


if __name__ == "__main__":
    unittest.main()
