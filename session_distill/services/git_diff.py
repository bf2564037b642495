"""Git-backed diff provider: session commits, working-tree changes, and unified diffs."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from session_distill import config
from session_distill.date_utils import epoch_ms_to_iso
from session_distill.distill.diff_attribution import get_start_commit
from session_distill.models import GitDiffHunk, GitDiffResult, StoredEvent, WorkingTreeChange

logger = logging.getLogger("session_distill.git_diff")

# Commits landing shortly after the last event still belong to the session.
_COMMIT_WINDOW_BUFFER_MS = 60_000


def _parse_count(token: str) -> int:
    # numstat prints "-" for binary files
    try:
        return int(token)
    except ValueError:
        return 0


def parse_numstat_output(output: str) -> list[WorkingTreeChange]:
    """Parse ``git diff --numstat`` lines of ``<adds>\\t<dels>\\t<path>``."""
    changes: list[WorkingTreeChange] = []
    for line in output.strip().splitlines():
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) < 3 or not parts[2]:
            continue
        additions = _parse_count(parts[0])
        deletions = _parse_count(parts[1])
        if additions > 0 and deletions == 0:
            status = "added"
        elif deletions > 0 and additions == 0:
            status = "deleted"
        else:
            status = "modified"
        changes.append(
            WorkingTreeChange(file_path=parts[2], status=status, additions=additions, deletions=deletions)
        )
    return changes


class GitDiffProvider:
    """Runs git in ``project_dir``. Any git failure degrades to an empty result."""

    def __init__(self, project_dir: str | Path, timeout: int | None = None) -> None:
        self.project_dir = Path(project_dir)
        self.timeout = timeout if timeout is not None else config.GIT_TIMEOUT_SECONDS

    def _run(self, *args: str) -> str | None:
        cmd = ["git", "-C", str(self.project_dir), *args]
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, errors="replace", check=False, timeout=self.timeout
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("git %s failed: %s", args[0], exc)
            return None
        if result.returncode != 0:
            logger.debug("git %s exited %s: %s", args[0], result.returncode, result.stderr.strip())
            return None
        return result.stdout

    def _working_tree_changes(self, staged: bool) -> list[WorkingTreeChange]:
        if staged:
            output = self._run("diff", "--numstat", "--cached")
        elif self._run("rev-parse", "HEAD") is not None:
            output = self._run("diff", "--numstat", "HEAD")
        else:
            # Fresh repository without commits.
            output = self._run("diff", "--numstat")
        return parse_numstat_output(output) if output else []

    def extract_git_diff(self, events: list[StoredEvent]) -> GitDiffResult:
        if not events:
            return GitDiffResult()

        since = epoch_ms_to_iso(events[0].t)
        until = epoch_ms_to_iso(events[-1].t + _COMMIT_WINDOW_BUFFER_MS)
        log_output = self._run("log", f"--since={since}", f"--until={until}", "--format=%H")
        commits = [line for line in (log_output or "").strip().splitlines() if line]
        if not commits:
            return GitDiffResult()

        edits = [
            (event.tool_input.get("file_path") or "", event.tool_use_id or "")
            for event in events
            if event.event == "PreToolUse" and event.tool_name in {"Edit", "Write"}
        ]

        hunks: list[GitDiffHunk] = []
        for commit in commits:
            output = self._run("diff", "--numstat", f"{commit}^..{commit}")
            if output is None:
                continue
            for change in parse_numstat_output(output):
                matched = next(
                    (
                        tool_use_id
                        for edit_path, tool_use_id in edits
                        if isinstance(edit_path, str)
                        and (edit_path.endswith(change.file_path) or change.file_path.endswith(edit_path))
                    ),
                    None,
                )
                hunks.append(
                    GitDiffHunk(
                        commit_hash=commit,
                        file_path=change.file_path,
                        additions=change.additions or 0,
                        deletions=change.deletions or 0,
                        matched_tool_use_id=matched,
                    )
                )

        # Working-tree state is read at distill time, not session time.
        working_tree = self._working_tree_changes(staged=False)
        staged = self._working_tree_changes(staged=True)
        return GitDiffResult(
            commits=commits,
            hunks=hunks,
            working_tree_changes=working_tree or None,
            staged_changes=staged or None,
        )

    def extract_net_changes(self, events: list[StoredEvent]) -> list[WorkingTreeChange]:
        """Changes from the session's start commit to now, whether or not anything was committed."""
        start_commit = get_start_commit(events)
        if not start_commit:
            return []

        unstaged_output = self._run("diff", "--numstat", start_commit)
        staged_output = self._run("diff", "--numstat", "--cached", start_commit)
        unstaged = parse_numstat_output(unstaged_output) if unstaged_output else []
        staged = parse_numstat_output(staged_output) if staged_output else []

        merged: dict[str, WorkingTreeChange] = {}
        for change in unstaged + staged:
            merged.setdefault(change.file_path, change)
        return list(merged.values())

    def capture_unified_diff(self, start_commit: str, relative_paths: list[str]) -> dict[str, str]:
        """``git diff -U3`` per path against the start commit, falling back to ``start..HEAD``."""
        diffs: dict[str, str] = {}
        for path in relative_paths:
            output = (self._run("diff", "-U3", start_commit, "--", path) or "").strip()
            if not output:
                output = (self._run("diff", "-U3", start_commit, "HEAD", "--", path) or "").strip()
            if output:
                diffs[path] = output
        return diffs
