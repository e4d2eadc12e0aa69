"""Local git engine interface and a ``git`` CLI implementation."""

from __future__ import annotations

import codecs
import re
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol, runtime_checkable

import structlog

from relaysync.core.errors import CancellationRequested, GitEngineError
from relaysync.engines.git_cache.cache import DataLevel

log = structlog.get_logger("relaysync.engine")

ProgressFn = Callable[[str, int | None, int | None], None]  # phase, loaded, total
CancelledFn = Callable[[], bool]

# "Receiving objects:  45% (45/100)"
_PROGRESS_RE = re.compile(r"^(?P<phase>[A-Za-z ]+):\s+\d+% \((?P<loaded>\d+)/(?P<total>\d+)\)")

# Seconds to wait for the stdout reader after the child has gone.
_READER_JOIN_TIMEOUT = 5.0


@dataclass(frozen=True)
class PushResult:
    ref: str
    ok: bool
    rejected: bool = False  # non-fast-forward
    forced: bool = False
    message: str = ""


@runtime_checkable
class GitEngine(Protocol):
    """Blocking git primitives; run off the event loop by :class:`GitWorker`.

    Implementations poll *cancelled* and raise
    :class:`~relaysync.core.errors.CancellationRequested` when it turns true,
    and raise :class:`~relaysync.core.errors.GitEngineError` on failure.
    """

    def clone(
        self,
        url: str,
        dest: Path,
        level: DataLevel,
        progress: ProgressFn,
        cancelled: CancelledFn,
    ) -> None: ...

    def fetch(
        self,
        repo_dir: Path,
        refs: Sequence[str],
        level: DataLevel,
        progress: ProgressFn,
        cancelled: CancelledFn,
    ) -> None: ...

    def push(
        self,
        repo_dir: Path,
        ref: str,
        force: bool,
        progress: ProgressFn,
        cancelled: CancelledFn,
    ) -> PushResult: ...


class SubprocessGitEngine:
    """:class:`GitEngine` backed by the ``git`` executable."""

    def __init__(self, git: str = "git") -> None:
        self._git = git

    def clone(
        self,
        url: str,
        dest: Path,
        level: DataLevel,
        progress: ProgressFn,
        cancelled: CancelledFn,
    ) -> None:
        if level <= DataLevel.NONE:
            raise GitEngineError("clone needs a data level above NONE")
        cmd = [self._git, "clone", "--progress"]
        if level == DataLevel.REFS:
            cmd += ["--no-checkout", "--depth", "1", "--filter=blob:none"]
        elif level == DataLevel.SHALLOW:
            cmd += ["--depth", "1"]
        cmd += ["--", url, str(dest)]
        self._run(cmd, progress, cancelled)

    def fetch(
        self,
        repo_dir: Path,
        refs: Sequence[str],
        level: DataLevel,
        progress: ProgressFn,
        cancelled: CancelledFn,
    ) -> None:
        cmd = [self._git, "-C", str(repo_dir), "fetch", "--progress"]
        if level == DataLevel.FULL:
            if (repo_dir / ".git" / "shallow").exists() or (repo_dir / "shallow").exists():
                cmd.append("--unshallow")
        else:
            cmd += ["--depth", "1"]
        cmd += ["origin", *refs]
        self._run(cmd, progress, cancelled)

    def push(
        self,
        repo_dir: Path,
        ref: str,
        force: bool,
        progress: ProgressFn,
        cancelled: CancelledFn,
    ) -> PushResult:
        cmd = [self._git, "-C", str(repo_dir), "push", "--porcelain", "--progress"]
        if force:
            cmd.append("--force")
        cmd += ["origin", ref]
        try:
            output = self._run(cmd, progress, cancelled)
        except GitEngineError as exc:
            if "non-fast-forward" in str(exc) or "[rejected]" in str(exc):
                return PushResult(ref=ref, ok=False, rejected=True, message=str(exc))
            raise
        return _parse_push(ref, output)

    # ── internal ───────────────────────────────────────────────────────────

    def _run(self, cmd: list[str], progress: ProgressFn, cancelled: CancelledFn) -> str:
        """Run *cmd*, streaming stderr progress; returns stdout.

        stdout is drained on its own thread while stderr is parsed, so neither
        pipe can fill up. The child is killed if anything raises before it
        exits, cancellation included.
        """
        if cancelled():
            raise CancellationRequested("git operation cancelled before start")
        log.debug("git.run", cmd=cmd[1:])
        with subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE) as proc:
            if proc.stdout is None or proc.stderr is None:
                raise RuntimeError("git subprocess started without pipes")
            stdout_chunks: list[bytes] = []
            reader = threading.Thread(
                target=_drain, args=(proc.stdout, stdout_chunks), daemon=True
            )
            reader.start()
            try:
                stderr_tail = _follow_stderr(proc.stderr, progress, cancelled)
                returncode = proc.wait()
            finally:
                if proc.poll() is None:
                    proc.kill()
                    log.debug("git.killed", cmd=cmd[1:])
                reader.join(timeout=_READER_JOIN_TIMEOUT)
        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        if returncode != 0:
            detail = "\n".join(stderr_tail + stdout.strip().splitlines())
            raise GitEngineError(f"git command failed (exit {returncode}): {detail}")
        return stdout


def _drain(stream: IO[bytes], sink: list[bytes]) -> None:
    for chunk in iter(lambda: stream.read(65536), b""):
        sink.append(chunk)


def _follow_stderr(stream: IO[bytes], progress: ProgressFn, cancelled: CancelledFn) -> list[str]:
    """Report progress lines until EOF; returns the last lines for error messages."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    tail: list[str] = []
    buffer = ""
    while True:
        if cancelled():
            raise CancellationRequested("git operation cancelled")
        # read1 returns whatever is available instead of waiting for a full block
        chunk = stream.read1(4096)  # type: ignore[attr-defined]
        if not chunk:
            break
        buffer += decoder.decode(chunk)
        # git rewrites progress lines in place with "\r"
        *lines, buffer = re.split(r"[\r\n]", buffer)
        for line in lines:
            _report(line, progress)
            if line.strip():
                tail = (tail + [line.strip()])[-20:]
    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        tail.append(buffer.strip())
    return tail


def _report(line: str, progress: ProgressFn) -> None:
    match = _PROGRESS_RE.match(line.strip())
    if match:
        phase = match.group("phase").strip()
        progress(phase, int(match.group("loaded")), int(match.group("total")))


def _parse_push(ref: str, output: str) -> PushResult:
    """Interpret ``git push --porcelain`` status lines.

    Flags: ``+`` forced update, ``!`` rejected, `` `` / ``*`` / ``=`` fine.
    """
    for line in output.splitlines():
        if not line.startswith(("+", "!", " ", "*", "=", "-")) or "\t" not in line:
            continue
        flag = line[0]
        summary = line.split("\t")[-1]
        if flag == "!":
            rejected = "non-fast-forward" in summary or "rejected" in summary
            return PushResult(ref=ref, ok=False, rejected=rejected, message=summary)
        return PushResult(ref=ref, ok=True, forced=flag == "+", message=summary)
    return PushResult(ref=ref, ok=True, message=output.strip())
