from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..schemas.domain import FileAction, FileSnapshot
from .base import Capability, CapabilityContext, CapabilityResult

_MAX_OUTPUT_CHARS = 10_000

_GIT_MUTATION = re.compile(
    r"(?:^|[;&|(]\s*)git\s+(?:-\S+\s+)*(?:push|commit|merge|rebase|reset|revert|cherry-pick|pull|am|checkout|switch|stash)\b"
)


class WorkspaceViolation(ValueError):
    """Raised when a path resolves outside the workspace root."""


def resolve_in_workspace(root: Path, path: str) -> Path:
    """
    Resolve ``path`` against ``root`` and refuse anything that escapes it.

    Raises:
        WorkspaceViolation: The resolved path is outside ``root``.
    """
    base = root.resolve()
    target = (base / path).resolve()
    if target != base and base not in target.parents:
        raise WorkspaceViolation(f"Path escapes workspace: {path}")
    return target


def _root(ctx: CapabilityContext) -> Path:
    return ctx.workspace_root or Path.cwd()


def _read_text(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8", errors="replace")


def _read_bytes(path: Path) -> Optional[bytes]:
    if not path.exists():
        return None
    return path.read_bytes()


def _relative(root: Path, target: Path) -> str:
    return target.relative_to(root.resolve()).as_posix()


@dataclass(frozen=True)
class ReadFileCapability(Capability):
    """Read a UTF-8 text file from the workspace."""

    name: str = "read_file"

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> CapabilityResult:
        """
        Args:
            ctx: The execution context.
            args: Dictionary of arguments:
                - path (str): Workspace-relative file path.

        Returns:
            CapabilityResult with {"path", "content"} or an error.
        """
        raw = str(args.get("path") or "").strip()
        if not raw:
            return CapabilityResult.failure("missing path")
        try:
            target = resolve_in_workspace(_root(ctx), raw)
        except WorkspaceViolation as exc:
            return CapabilityResult.failure(str(exc))
        content = await asyncio.to_thread(_read_text, target)
        if content is None:
            return CapabilityResult.failure(f"file not found: {raw}")
        return CapabilityResult(ok=True, output={"path": raw, "content": content[:_MAX_OUTPUT_CHARS]})


@dataclass(frozen=True)
class WriteFileCapability(Capability):
    """
    Create or overwrite a workspace file.

    The prior content is returned as a ``FileSnapshot`` so a rollback can
    restore (or remove) the file.
    """

    name: str = "write_file"

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> CapabilityResult:
        raw = str(args.get("path") or "").strip()
        if not raw:
            return CapabilityResult.failure("missing path")
        content = args.get("content")
        if not isinstance(content, str):
            return CapabilityResult.failure("content must be a string")
        root = _root(ctx)
        try:
            target = resolve_in_workspace(root, raw)
        except WorkspaceViolation as exc:
            return CapabilityResult.failure(str(exc))

        def _write() -> Optional[bytes]:
            previous = _read_bytes(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            return previous

        previous = await asyncio.to_thread(_write)
        rel = _relative(root, target)
        action = FileAction.create if previous is None else FileAction.modify
        return CapabilityResult(
            ok=True,
            output={"path": rel, "action": action.value, "bytes": len(content.encode("utf-8"))},
            files_changed=[rel],
            file_sizes={rel: len(content.encode("utf-8"))},
            file_snapshots=[FileSnapshot.capture(rel, previous, action)],
        )


@dataclass(frozen=True)
class DeleteFileCapability(Capability):
    """Delete a workspace file, keeping its content for rollback."""

    name: str = "delete_file"

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> CapabilityResult:
        raw = str(args.get("path") or "").strip()
        if not raw:
            return CapabilityResult.failure("missing path")
        root = _root(ctx)
        try:
            target = resolve_in_workspace(root, raw)
        except WorkspaceViolation as exc:
            return CapabilityResult.failure(str(exc))

        def _delete() -> Optional[bytes]:
            previous = _read_bytes(target)
            if previous is not None:
                target.unlink()
            return previous

        previous = await asyncio.to_thread(_delete)
        if previous is None:
            return CapabilityResult.failure(f"file not found: {raw}")
        rel = _relative(root, target)
        return CapabilityResult(
            ok=True,
            output={"path": rel, "action": FileAction.delete.value},
            files_changed=[rel],
            file_sizes={rel: len(previous)},
            file_snapshots=[FileSnapshot.capture(rel, previous, FileAction.delete)],
        )


@dataclass(frozen=True)
class RunCommandCapability(Capability):
    """
    Run a shell command inside the workspace.

    This is a high-risk capability; the safety checker normally routes it
    through confirmation. Commands are not journaled for rollback. A
    successful git command that rewrites the repository reports the
    workspace root (".") as changed, so file-change hooks see it.
    """

    name: str = "run_command"
    timeout_seconds: float = 60.0

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> CapabilityResult:
        command = str(args.get("command") or args.get("cmd") or "").strip()
        if not command:
            return CapabilityResult.failure("missing command")
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(_root(ctx)),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return CapabilityResult.failure(f"command timed out after {self.timeout_seconds:g}s", command=command)
        ok = proc.returncode == 0
        return CapabilityResult(
            ok=ok,
            files_changed=["."] if ok and _GIT_MUTATION.search(command) else [],
            output={
                "command": command,
                "exit_code": proc.returncode,
                "stdout": stdout.decode("utf-8", errors="replace")[:_MAX_OUTPUT_CHARS],
                "stderr": stderr.decode("utf-8", errors="replace")[:_MAX_OUTPUT_CHARS],
            },
        )
