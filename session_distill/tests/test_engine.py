import unittest

from session_distill.distill.engine import distill
from session_distill.models import (
    GitDiffResult,
    MessageLink,
    SessionContext,
    SpawnLink,
    StopLink,
    StoredEvent,
    TranscriptEntry,
    WorkingTreeChange,
)

T0 = 1_735_689_600_000  # 2025-01-01T00:00:00Z
TRANSCRIPT = "/home/dev/.claude/projects/repo/root.jsonl"


def _edit(t: int, kind: str, tool_use_id: str, **extra) -> StoredEvent:
    data = {
        "tool_name": "Edit",
        "tool_use_id": tool_use_id,
        "tool_input": {"file_path": "/repo/src/a.py", "old_string": "foo()", "new_string": "bar()\nbaz()"},
    }
    data.update(extra)
    return StoredEvent(t=t, event=kind, sid="root", data=data)


def _solo_events() -> list[StoredEvent]:
    return [
        StoredEvent(
            t=T0,
            event="SessionStart",
            sid="root",
            context=SessionContext(project_dir="/repo", model="claude-sonnet-4-5", git_commit="abc123"),
            data={"transcript_path": TRANSCRIPT},
        ),
        StoredEvent(t=T0 + 500, event="UserPromptSubmit", sid="root", data={"prompt": "/build specs/x.md"}),
        _edit(T0 + 1000, "PreToolUse", "edit-1"),
        _edit(T0 + 1100, "PostToolUseFailure", "edit-1", error="old_string not found"),
        _edit(T0 + 2000, "PreToolUse", "edit-2"),
        _edit(T0 + 2100, "PostToolUse", "edit-2"),
    ]


def _transcript() -> list[TranscriptEntry]:
    return [
        TranscriptEntry.model_validate(
            {
                "uuid": "u1",
                "type": "user",
                "timestamp": "2025-01-01T00:00:00.400Z",
                "message": {"role": "user", "content": "/build specs/x.md"},
            }
        ),
        TranscriptEntry.model_validate(
            {
                "uuid": "a1",
                "type": "assistant",
                "timestamp": "2025-01-01T00:00:00.900Z",
                "message": {
                    "role": "assistant",
                    "model": "claude-sonnet-4-5",
                    "content": [
                        {"type": "thinking", "thinking": "Swap the call in a.py"},
                        {"type": "tool_use", "id": "edit-1", "name": "Edit", "input": {}},
                    ],
                    "usage": {"input_tokens": 1_000_000, "output_tokens": 100_000},
                },
            }
        ),
    ]


class FakeGit:
    def __init__(self) -> None:
        self.requested: list[tuple[str, list[str]]] = []

    def extract_git_diff(self, events):
        return GitDiffResult(commits=["def456"])

    def extract_net_changes(self, events):
        return [WorkingTreeChange(file_path="src/a.py", additions=2, deletions=1)]

    def capture_unified_diff(self, start_commit, relative_paths):
        self.requested.append((start_commit, relative_paths))
        return {"src/a.py": "--- a/src/a.py\n+++ b/src/a.py\n@@ -1,1 +1,2 @@\n-foo()\n+bar()\n+baz()\n"}


class SoloSessionTests(unittest.TestCase):
    def _distill(self, **kwargs):
        requested: list[str] = []

        def read_transcript(path: str) -> list[TranscriptEntry]:
            requested.append(path)
            return _transcript()

        result = distill("root", "/repo", _solo_events(), [], read_transcript=read_transcript, **kwargs)
        return result, requested

    def test_full_pipeline_without_git_or_team(self) -> None:
        result, requested = self._distill(read_session_name=lambda path: "Swap calls")

        self.assertEqual(requested, [TRANSCRIPT])
        self.assertEqual(result.session_id, "root")
        self.assertEqual(result.session_name, "Swap calls")
        self.assertEqual(result.start_time, T0)
        self.assertTrue(result.complete)
        self.assertEqual(result.transcript_path, TRANSCRIPT)

        self.assertEqual(result.stats.tool_call_count, 2)
        self.assertEqual(result.stats.failure_count, 1)
        self.assertEqual(result.stats.model, "claude-sonnet-4-5")
        cost = result.stats.cost_estimate
        self.assertIsNotNone(cost)
        assert cost is not None
        self.assertEqual(cost.estimated_input_tokens, 1_000_000)
        self.assertAlmostEqual(cost.estimated_cost_usd, 4.5)
        self.assertFalse(cost.is_estimated)

        self.assertEqual([b.type for b in result.backtracks], ["failure_retry"])
        chain = result.edit_chains.chains[0]
        self.assertEqual(chain.abandoned_edit_ids, ["edit-1"])
        self.assertEqual(chain.surviving_edit_ids, ["edit-2"])
        self.assertIsNone(result.edit_chains.net_changes)
        self.assertIsNone(result.edit_chains.diff_attribution)
        self.assertEqual(result.git_diff, GitDiffResult())

        self.assertEqual([r.tool_use_id for r in result.reasoning], ["edit-1"])
        self.assertEqual([m.message_type for m in result.user_messages], ["prompt"])
        self.assertIsNotNone(result.summary)
        self.assertTrue(result.summary.narrative.startswith("A "))
        self.assertTrue(result.timeline)

        self.assertIsNone(result.agents)
        self.assertIsNone(result.team_metrics)
        self.assertIsNone(result.communication_graph)
        self.assertIsNone(result.plan_drift)

    def test_plan_drift_from_referenced_plan(self) -> None:
        read: list[str] = []

        def read_spec(path: str):
            read.append(path)
            return "## Files\n- `src/a.py`\n- `src/b.py`\n"

        result, _ = self._distill(read_spec=read_spec)

        self.assertEqual(read, ["specs/x.md"])
        drift = result.plan_drift
        self.assertIsNotNone(drift)
        assert drift is not None
        self.assertEqual(drift.spec_path, "specs/x.md")
        self.assertEqual(drift.missing_files, ["src/b.py"])
        self.assertAlmostEqual(drift.drift_score, 0.5)

    def test_unreadable_plan_is_skipped(self) -> None:
        result, _ = self._distill(read_spec=lambda path: None)
        self.assertIsNone(result.plan_drift)

    def test_git_source_adds_changes_and_attribution(self) -> None:
        git = FakeGit()
        result, _ = self._distill(git=git)

        self.assertEqual(git.requested, [("abc123", ["src/a.py"])])
        self.assertEqual(result.git_diff.commits, ["def456"])
        self.assertEqual([c.file_path for c in result.edit_chains.net_changes or []], ["src/a.py"])
        attribution = result.edit_chains.diff_attribution
        self.assertIsNotNone(attribution)
        assert attribution is not None
        self.assertEqual(attribution[0].file_path, "src/a.py")
        self.assertEqual((attribution[0].total_additions, attribution[0].total_deletions), (2, 1))

    def test_json_output_uses_wire_names(self) -> None:
        result, _ = self._distill()
        payload = result.to_json_dict()

        self.assertEqual(payload["session_id"], "root")
        self.assertNotIn("agents", payload)
        self.assertIn("summary", payload)


class TeamSessionTests(unittest.TestCase):
    def test_spawned_agent_and_communication(self) -> None:
        events = [
            StoredEvent(t=T0, event="SessionStart", sid="root", context=SessionContext(model="claude-opus-4-1")),
            StoredEvent(
                t=T0 + 2000,
                event="PreToolUse",
                sid="root",
                data={"tool_name": "Read", "tool_use_id": "r1", "tool_input": {"file_path": "/repo/src/a.py"}},
            ),
            StoredEvent(
                t=T0 + 2100,
                event="PostToolUse",
                sid="root",
                data={"tool_name": "Read", "tool_use_id": "r1", "tool_input": {"file_path": "/repo/src/a.py"}},
            ),
        ]
        links = [
            SpawnLink(t=T0 + 1000, parent_session="root", agent_id="a1", agent_type="builder", agent_name="alice"),
            MessageLink(t=T0 + 1500, from_="root", to="alice", session_id="root", summary="go"),
            StopLink(t=T0 + 3000, agent_id="a1"),
            SpawnLink(t=T0 + 1000, parent_session="other", agent_id="x1", agent_type="builder", agent_name="stranger"),
        ]

        result = distill("root", "/repo", events, links, read_transcript=lambda path: [])

        self.assertIsNotNone(result.agents)
        assert result.agents is not None
        self.assertEqual([a.agent_name for a in result.agents], ["alice"])
        self.assertEqual(result.agents[0].tool_call_count, 1)

        self.assertIsNotNone(result.team_metrics)
        assert result.team_metrics is not None
        self.assertEqual(result.team_metrics.agent_count, 1)

        graph = result.communication_graph or []
        self.assertIn(("leader", "alice"), [(edge.from_name, edge.to_name) for edge in graph])
        self.assertEqual([entry.summary for entry in result.comm_sequence or []], ["go"])
        self.assertEqual([item.agent_name for item in result.agent_lifetimes or []], ["alice"])
        self.assertIn("agent_spawn", [entry.type for entry in result.timeline])
        self.assertIn("Team session", result.summary.narrative)


if __name__ == "__main__":
    unittest.main()
