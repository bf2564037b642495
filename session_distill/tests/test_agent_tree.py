import unittest

from session_distill.distill.agent_tree import (
    attribute_events_to_agents,
    build_agent_intervals,
    build_agent_tree,
    compute_link_based_duration,
    infer_agents_from_comms,
)
from session_distill.models import MessageLink, SpawnLink, StopLink, StoredEvent, TaskLink


def _tool_event(t: int, tool_use_id: str, tool_name: str = "Read") -> StoredEvent:
    return StoredEvent(
        t=t,
        event="PreToolUse",
        sid="root",
        data={"tool_name": tool_name, "tool_use_id": tool_use_id, "tool_input": {"file_path": "/repo/a.py"}},
    )


class AgentIntervalTests(unittest.TestCase):
    def test_events_inside_an_interval_belong_to_the_agent(self) -> None:
        links = [
            SpawnLink(t=2000, parent_session="root", agent_id="agent-a", agent_type="builder"),
            StopLink(t=3000, agent_id="agent-a"),
        ]
        events = [_tool_event(500, "t1"), _tool_event(2500, "t2")]

        attributed = attribute_events_to_agents("root", events, links)

        self.assertEqual([e.tool_use_id for e in attributed["agent-a"]], ["t2"])
        self.assertEqual([e.tool_use_id for e in attributed["root"]], ["t1"])

    def test_innermost_interval_wins(self) -> None:
        links = [
            SpawnLink(t=1000, parent_session="root", agent_id="outer", agent_type="lead"),
            SpawnLink(t=2000, parent_session="outer", agent_id="inner", agent_type="builder"),
            StopLink(t=3000, agent_id="inner"),
            StopLink(t=5000, agent_id="outer"),
        ]
        events = [_tool_event(1500, "a"), _tool_event(2500, "b"), _tool_event(4000, "c")]

        attributed = attribute_events_to_agents("root", events, links)

        self.assertEqual([e.tool_use_id for e in attributed["inner"]], ["b"])
        self.assertEqual([e.tool_use_id for e in attributed["outer"]], ["a", "c"])
        self.assertNotIn("root", attributed)

    def test_unstopped_agent_runs_to_last_event(self) -> None:
        links = [SpawnLink(t=100, parent_session="root", agent_id="a", agent_type="builder")]
        intervals = build_agent_intervals([_tool_event(50, "x"), _tool_event(900, "y")], links)
        self.assertEqual(len(intervals), 1)
        self.assertEqual((intervals[0].start, intervals[0].end), (100, 900))

    def test_resumed_agent_uses_first_spawn(self) -> None:
        links = [
            SpawnLink(t=100, parent_session="root", agent_id="a", agent_type="builder"),
            SpawnLink(t=700, parent_session="root", agent_id="a", agent_type="builder"),
            StopLink(t=1000, agent_id="a"),
        ]
        intervals = build_agent_intervals([], links)
        self.assertEqual([(i.start, i.end) for i in intervals], [(100, 1000)])

    def test_same_start_prefers_the_narrower_interval(self) -> None:
        links = [
            SpawnLink(t=1000, parent_session="root", agent_id="outer", agent_type="lead"),
            SpawnLink(t=1000, parent_session="outer", agent_id="a", agent_type="builder"),
            StopLink(t=5000, agent_id="a"),
            StopLink(t=6000, agent_id="outer"),
        ]
        events = [_tool_event(500, "x"), _tool_event(2500, "y")]

        attributed = attribute_events_to_agents("root", events, links)

        self.assertEqual([e.tool_use_id for e in attributed["a"]], ["y"])
        self.assertEqual([e.tool_use_id for e in attributed["root"]], ["x"])
        self.assertNotIn("outer", attributed)


class AgentTreeTests(unittest.TestCase):
    def test_builds_nested_tree_with_durations(self) -> None:
        links = [
            SpawnLink(t=1000, parent_session="root", agent_id="lead", agent_type="lead", agent_name="lead"),
            SpawnLink(t=2000, parent_session="lead", agent_id="child", agent_type="builder", agent_name="worker"),
            StopLink(t=3000, agent_id="child"),
            StopLink(t=6000, agent_id="lead"),
        ]
        events = [_tool_event(2500, "t1"), _tool_event(4000, "t2")]

        tree = build_agent_tree("root", links, events, read_transcript=lambda path: [])

        self.assertEqual(len(tree), 1)
        lead = tree[0]
        self.assertEqual(lead.session_id, "lead")
        self.assertEqual(lead.duration_ms, 5000)
        self.assertEqual(lead.tool_call_count, 2)
        self.assertEqual([child.agent_name for child in lead.children], ["worker"])
        self.assertEqual(lead.children[0].duration_ms, 1000)
        self.assertEqual(lead.children[0].tool_call_count, 1)

    def test_falls_back_to_agent_event_log(self) -> None:
        links = [
            SpawnLink(t=1000, parent_session="root", agent_id="a", agent_type="builder"),
            StopLink(t=2000, agent_id="a"),
        ]
        requested: list[str] = []

        def read_agent_events(agent_id: str) -> list[StoredEvent]:
            requested.append(agent_id)
            return [_tool_event(1100, "x", "Edit"), _tool_event(1200, "y", "Read")]

        tree = build_agent_tree("root", links, [], lambda path: [], read_agent_events)

        self.assertEqual(requested, ["a"])
        self.assertEqual(tree[0].tool_call_count, 2)
        self.assertIsNotNone(tree[0].stats)
        self.assertEqual(tree[0].stats.tools_by_name, {"Edit": 1, "Read": 1})

    def test_link_based_duration_uses_latest_activity(self) -> None:
        links = [
            MessageLink(t=1500, from_="lead", to="a"),
            MessageLink(t=4000, from_="a", to="lead"),
            MessageLink(t=9000, from_="x", to="y"),
        ]
        self.assertEqual(compute_link_based_duration("a", None, 1000, links), 3000)
        self.assertEqual(compute_link_based_duration("zzz", None, 1000, links), 0)


class InferAgentsFromCommsTests(unittest.TestCase):
    def test_recipients_become_agents(self) -> None:
        links = [
            MessageLink(t=1000, from_="root", to="alice", session_id="root"),
            MessageLink(t=4000, from_="root", to="alice", session_id="root"),
            TaskLink(t=1500, action="assign", task_id="1", session_id="uuid-alice", owner="alice"),
        ]

        agents = infer_agents_from_comms("root", links)

        self.assertEqual(len(agents), 1)
        self.assertEqual(agents[0].agent_name, "alice")
        self.assertEqual(agents[0].session_id, "uuid-alice")
        self.assertEqual(agents[0].duration_ms, 3000)

    def test_no_messages_no_agents(self) -> None:
        self.assertEqual(infer_agents_from_comms("root", []), [])


if __name__ == "__main__":
    unittest.main()
