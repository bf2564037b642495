"""Compare the files a markdown plan promises against the files a journey actually touched."""
from __future__ import annotations

import re
from typing import Iterable, Optional

from session_distill.models import FileMapResult, PlanDriftReport

_FILES_SECTION_KEYWORDS = ("file", "deliverable", "relevant", "new", "modified", "create")

_BACKTICK_BULLET = re.compile(r"^[-*]\s+`([^`]+)`")
_BOLD_BULLET = re.compile(r"^[-*]\s+\*\*([^*]+)\*\*")
_BARE_BULLET = re.compile(r"^[-*]\s+([\w./@-]+\.\w+)")
_PREFIX_PATH = re.compile(r"^(?:Create|Modify|File):\s*`?([^\s`]+)`?", re.IGNORECASE)
_BACKTICK_BULLET_LINE = re.compile(r"^\s*[-*]\s+`")
_INLINE_BACKTICK = re.compile(r"`([^`]+)`")
_TABLE_CELL = re.compile(r"\|\s*([^|]+?)\s*(?=\|)")
_FILE_EXTENSION = re.compile(r"\.\w+$")
_BUILD_SPEC = re.compile(r"/build\s+([\w./@-]*specs/[\w./@-]+)")

_COMMAND_KEYWORDS = (
    "bun", "npm", "npx", "git", "cd", "mkdir", "rm", "cp", "mv",
    "echo", "cat", "grep", "curl", "wget", "docker", "yarn", "pnpm",
    "node", "deno", "tsc", "eslint", "prettier", "jest", "vitest",
)


def _has_extension(value: str) -> bool:
    return bool(_FILE_EXTENSION.search(value))


def _is_command(value: str) -> bool:
    lower = value.strip().lower()
    return any(lower == cmd or lower.startswith(f"{cmd} ") for cmd in _COMMAND_KEYWORDS)


def _is_file_path(value: str) -> bool:
    return "/" in value and _has_extension(value) and "(" not in value and not _is_command(value)


def _normalize(path: str) -> str:
    path = path.strip()
    return path[2:] if path.startswith("./") else path


def _to_relative(path: str, project_dir: Optional[str]) -> str:
    path = path[2:] if path.startswith("./") else path
    if path.startswith("/") and project_dir:
        prefix = project_dir if project_dir.endswith("/") else f"{project_dir}/"
        if path.startswith(prefix):
            return path[len(prefix):]
    return path


def _code_block_paths(line: str) -> list[str]:
    stripped = line.strip()
    if not stripped:
        return []
    if any(marker in stripped for marker in ("=", "(", "{")) or stripped.startswith(("//", "#!")):
        return []
    token = stripped.split()[0]
    return [_normalize(token)] if _is_file_path(token) else []


def _table_paths(line: str) -> list[str]:
    if "|" not in line:
        return []
    paths = []
    for match in _TABLE_CELL.finditer(line):
        cell = match.group(1).strip()
        if len(cell) >= 2 and cell.startswith("`") and cell.endswith("`"):
            cell = cell[1:-1]
        if _is_file_path(cell):
            paths.append(_normalize(cell))
    return paths


def _inline_paths(line: str) -> list[str]:
    if "`" not in line or _BACKTICK_BULLET_LINE.match(line):
        return []
    return [_normalize(m.group(1)) for m in _INLINE_BACKTICK.finditer(line) if _is_file_path(m.group(1))]


def _bullet_path(line: str) -> Optional[str]:
    stripped = line.strip()
    match = _BACKTICK_BULLET.match(stripped)
    if match and "(" not in match.group(1):
        return match.group(1)
    for pattern in (_BOLD_BULLET, _BARE_BULLET):
        match = pattern.match(stripped)
        if match and _has_extension(match.group(1)) and "(" not in match.group(1):
            return match.group(1)
    return None


def parse_spec_expected_files(content: str) -> list[str]:
    """Collect file paths mentioned by a markdown plan, sorted and unique.

    Paths come from fenced code blocks, ``Create:``/``Modify:``/``File:``
    prefixes, inline backticks, table cells, and bullets under headings that
    look like a files section.
    """
    paths: list[str] = []
    in_files_section = False
    in_code_block = False

    for line in content.split("\n"):
        if line.strip().startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block:
            paths.extend(_code_block_paths(line))
            continue

        prefix = _PREFIX_PATH.match(line.strip())
        if prefix:
            paths.append(_normalize(prefix.group(1)))

        heading = line.strip()
        if heading.startswith("#"):
            in_files_section = any(keyword in heading.lower() for keyword in _FILES_SECTION_KEYWORDS)
        elif in_files_section:
            bullet = _bullet_path(line)
            if bullet:
                paths.append(_normalize(bullet))

        paths.extend(_inline_paths(line))
        paths.extend(_table_paths(line))

    return sorted(set(paths))


def extract_actual_files(file_maps: Iterable[FileMapResult]) -> list[str]:
    return sorted(
        {entry.file_path for file_map in file_maps for entry in file_map.files if entry.edits > 0 or entry.writes > 0}
    )


def compute_plan_drift(
    spec_path: str,
    spec_content: str,
    file_maps: list[FileMapResult],
    project_dir: Optional[str] = None,
) -> PlanDriftReport:
    expected = sorted({_to_relative(p, project_dir) for p in parse_spec_expected_files(spec_content)})
    actual = sorted({_to_relative(p, project_dir) for p in extract_actual_files(file_maps)})

    expected_set, actual_set = set(expected), set(actual)
    unexpected = [path for path in actual if path not in expected_set]
    missing = [path for path in expected if path not in actual_set]

    return PlanDriftReport(
        spec_path=spec_path,
        expected_files=expected,
        actual_files=actual,
        unexpected_files=unexpected,
        missing_files=missing,
        drift_score=min(1.0, (len(unexpected) + len(missing)) / max(len(expected), 1)),
    )


def detect_spec_ref(prompts: Iterable[str]) -> Optional[str]:
    """First ``/build <...specs/...>`` argument found in the prompts."""
    for prompt in prompts:
        match = _BUILD_SPEC.search(prompt)
        if match:
            return match.group(1)
    return None
