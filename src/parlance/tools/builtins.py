"""Built-in read-only filesystem tools, confined to a base directory."""

from __future__ import annotations

import asyncio
import fnmatch
import os
from pathlib import Path
import re
from typing import TYPE_CHECKING, Any

from parlance.errors import AbortError, ToolExecutionError
from parlance.tools.registry import LocalToolRegistry, Tool

if TYPE_CHECKING:
    from parlance.session import CancellationToken

MAX_OUTPUT_BYTES = 50 * 1024
MAX_LINE_LENGTH = 2000
MAX_LIST_ENTRIES = 500
MAX_SEARCH_MATCHES = 100
BINARY_CHECK_BYTES = 8192
_SKIP_DIRS = frozenset({".git", "__pycache__", "node_modules", ".venv"})


def safe_resolve(file_path: str, base_dir: Path) -> Path:
    """Resolve *file_path* against *base_dir*, refusing anything outside it.

    Symlinks are resolved on both sides before the containment check.
    """
    base = base_dir.resolve()
    candidate = Path(file_path)
    resolved = (candidate if candidate.is_absolute() else base / candidate).resolve()
    if not resolved.is_relative_to(base):
        raise ToolExecutionError(
            f"Path {file_path!r} is outside the allowed directory",
            hint=f"Use a path under {base}",
        )
    return resolved


def _relative(path: Path, base: Path) -> str:
    try:
        return str(path.relative_to(base.resolve())) or "."
    except ValueError:
        return str(path)


def _is_binary(path: Path) -> bool:
    with path.open("rb") as f:
        return b"\x00" in f.read(BINARY_CHECK_BYTES)


def _read_file(base: Path, path: str, offset: int, limit: int) -> dict[str, Any]:
    resolved = safe_resolve(path, base)
    if not resolved.exists():
        raise ToolExecutionError(f"Path does not exist: {path}", tool_name="read_file")
    if resolved.is_dir():
        raise ToolExecutionError(
            f"Path is a directory: {path}",
            hint="Use list_directory for directories.",
            tool_name="read_file",
        )
    if _is_binary(resolved):
        raise ToolExecutionError(f"Binary file detected: {path}", tool_name="read_file")
    try:
        text = resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ToolExecutionError(
            f"Failed to decode {path} as UTF-8: {e}", tool_name="read_file"
        ) from e

    lines = text.splitlines()
    start = max(offset - 1, 0)
    selected = lines[start : start + max(limit, 1)]
    out: list[str] = []
    total = 0
    for i, line in enumerate(selected, start=start + 1):
        numbered = f"{i}: {line[:MAX_LINE_LENGTH]}"
        size = len(numbered.encode("utf-8")) + 1
        if total + size > MAX_OUTPUT_BYTES:
            break
        out.append(numbered)
        total += size

    emitted_through = start + len(out)
    result: dict[str, Any] = {
        "path": _relative(resolved, base),
        "content": "\n".join(out),
        "total_lines": len(lines),
    }
    if emitted_through < len(lines):
        result["next_offset"] = emitted_through + 1
    return result


def _list_directory(base: Path, path: str) -> dict[str, Any]:
    resolved = safe_resolve(path, base)
    if not resolved.exists():
        raise ToolExecutionError(
            f"Path does not exist: {path}", tool_name="list_directory"
        )
    if not resolved.is_dir():
        raise ToolExecutionError(
            f"Path is not a directory: {path}", tool_name="list_directory"
        )
    entries = [
        child.name + ("/" if child.is_dir() else "")
        for child in sorted(resolved.iterdir())
    ]
    return {
        "path": _relative(resolved, base),
        "entries": entries[:MAX_LIST_ENTRIES],
        "truncated": len(entries) > MAX_LIST_ENTRIES,
    }


def _search_files(
    base: Path,
    pattern: str,
    path: str,
    include: str | None,
    token: CancellationToken,
) -> dict[str, Any]:
    try:
        regex = re.compile(pattern)
    except re.error as e:
        raise ToolExecutionError(
            f"Invalid regex {pattern!r}: {e}", tool_name="search_files"
        ) from e

    root = safe_resolve(path, base)
    if not root.is_dir():
        raise ToolExecutionError(
            f"Path is not a directory: {path}", tool_name="search_files"
        )

    matches: list[dict[str, Any]] = []
    truncated = False
    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        for filename in sorted(files):
            if token.is_cancelled():
                raise AbortError("search_files cancelled")
            if include and not fnmatch.fnmatch(filename, include):
                continue
            filepath = Path(dirpath) / filename
            if not filepath.resolve().is_relative_to(base.resolve()):
                continue
            try:
                if _is_binary(filepath):
                    continue
                text = filepath.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for line_no, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    if len(matches) >= MAX_SEARCH_MATCHES:
                        truncated = True
                        break
                    matches.append(
                        {
                            "path": _relative(filepath, base),
                            "line": line_no,
                            "text": line[:MAX_LINE_LENGTH],
                        }
                    )
            if truncated:
                break
        if truncated:
            break

    return {"pattern": pattern, "matches": matches, "truncated": truncated}


def builtin_tools(base_dir: str | os.PathLike[str] = ".") -> list[Tool]:
    """Return the built-in tools bound to *base_dir*."""
    base = Path(base_dir)

    async def read_file(
        args: dict[str, Any], token: CancellationToken
    ) -> dict[str, Any]:
        del token
        return await asyncio.to_thread(
            _read_file,
            base,
            str(args["path"]),
            int(args.get("offset", 1)),
            int(args.get("limit", 2000)),
        )

    async def list_directory(
        args: dict[str, Any], token: CancellationToken
    ) -> dict[str, Any]:
        del token
        path = str(args.get("path", "."))
        return await asyncio.to_thread(_list_directory, base, path)

    async def search_files(
        args: dict[str, Any], token: CancellationToken
    ) -> dict[str, Any]:
        include = args.get("include")
        return await asyncio.to_thread(
            _search_files,
            base,
            str(args["pattern"]),
            str(args.get("path", ".")),
            str(include) if include else None,
            token,
        )

    return [
        Tool(
            name="read_file",
            description=(
                "Read a UTF-8 text file. Returns numbered lines; use offset/limit "
                "to page through long files."
            ),
            handler=read_file,
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path."},
                    "offset": {
                        "type": "integer",
                        "description": "1-based line to start from.",
                    },
                    "limit": {"type": "integer", "description": "Maximum lines."},
                },
                "required": ["path"],
            },
        ),
        Tool(
            name="list_directory",
            description="List the entries of a directory; subdirectories end in '/'.",
            handler=list_directory,
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Directory path."},
                },
            },
        ),
        Tool(
            name="search_files",
            description="Search file contents recursively for a regular expression.",
            handler=search_files,
            parameters={
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Python regex."},
                    "path": {
                        "type": "string",
                        "description": "Directory to search (default: base).",
                    },
                    "include": {
                        "type": "string",
                        "description": "Filename glob filter, e.g. '*.py'.",
                    },
                },
                "required": ["pattern"],
            },
        ),
    ]


def builtin_registry(base_dir: str | os.PathLike[str] = ".") -> LocalToolRegistry:
    """A LocalToolRegistry preloaded with the built-in tools."""
    return LocalToolRegistry(builtin_tools(base_dir))
