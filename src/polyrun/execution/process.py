from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Mapping, Sequence

logger = logging.getLogger(__name__)

_DRAIN_SECONDS = 1.0
_CHUNK_CHARS = 8192


@dataclass(slots=True)
class ProcessOutcome:
    """Captured result of one bounded child process.

    Example:
        ```python
        out = ProcessOutcome(stdout="hi\\n", stderr="", returncode=0, timed_out=False)
        ```
    """

    stdout: str
    stderr: str
    returncode: int
    timed_out: bool
    truncated: bool = False


class _CappedReader:
    """Drain one child pipe on a thread, keeping at most `limit` characters.

    Example:
        ```python
        reader = _CappedReader(proc.stdout, limit=131072)
        ```
    """

    def __init__(self, stream: IO[str], limit: int | None) -> None:
        """Start draining the stream in the background.

        Example:
            ```python
            reader = _CappedReader(proc.stderr, limit=None)
            ```
        """
        self._stream = stream
        self._limit = limit
        self._chunks: list[str] = []
        self._size = 0
        self.truncated = False
        self._thread = threading.Thread(target=self._pump, daemon=True)
        self._thread.start()

    def _pump(self) -> None:
        """Read until EOF; chunks past the limit are read and discarded.

        Example:
            ```python
            reader._pump()
            ```
        """
        try:
            for chunk in iter(lambda: self._stream.read(_CHUNK_CHARS), ""):
                if self._limit is not None:
                    room = self._limit - self._size
                    if len(chunk) > room:
                        chunk = chunk[: max(0, room)]
                        self.truncated = True
                if chunk:
                    self._chunks.append(chunk)
                    self._size += len(chunk)
        except OSError as exc:
            logger.debug("Stopped reading child pipe: %s", exc)
        finally:
            with contextlib.suppress(OSError):
                self._stream.close()

    def join(self, timeout: float) -> None:
        """Wait for EOF, up to `timeout` seconds.

        Example:
            ```python
            reader.join(1.0)
            ```
        """
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.debug("Pipe still open after %.1fs drain; keeping what was read", timeout)

    def text(self) -> str:
        """Return everything kept so far.

        Example:
            ```python
            out = reader.text()
            ```
        """
        return "".join(self._chunks)


def kill_process_tree(proc: subprocess.Popen[str]) -> None:
    """Force-terminate a child and every process in its session.

    Example:
        ```python
        kill_process_tree(proc)
        ```
    """
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except PermissionError:
            logger.debug("killpg refused for pid %s, killing the child only", proc.pid)
    proc.kill()


def _feed_stdin(proc: subprocess.Popen[str], input_text: str) -> None:
    """Write the whole input to the child and close its stdin.

    Example:
        ```python
        _feed_stdin(proc, '{"code": "print(1)"}')
        ```
    """
    assert proc.stdin is not None
    try:
        proc.stdin.write(input_text)
    except OSError:
        logger.debug("Child %s closed stdin before reading all input", proc.pid)
    finally:
        with contextlib.suppress(OSError):
            proc.stdin.close()


def run_bounded(
    cmd: Sequence[str],
    *,
    cwd: Path,
    timeout_seconds: float,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
    merge_stderr: bool = False,
    max_output_chars: int | None = None,
) -> ProcessOutcome:
    """Run a command in its own session, killing its whole tree when it ends.

    The process group is killed on timeout and again after a normal exit, so
    background children never outlive the call. Output beyond
    `max_output_chars` per stream is read and discarded.
    `FileNotFoundError` from a missing executable is left to the caller.

    Example:
        ```python
        out = run_bounded(["csc", "Program.cs"], cwd=Path("/tmp/ws"), timeout_seconds=10)
        ```
    """
    proc = subprocess.Popen(
        list(cmd),
        cwd=str(cwd),
        env=dict(env) if env is not None else None,
        stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        start_new_session=True,
    )
    assert proc.stdout is not None
    stdout = _CappedReader(proc.stdout, max_output_chars)
    stderr = _CappedReader(proc.stderr, max_output_chars) if proc.stderr is not None else None
    timed_out = False
    try:
        if input_text is not None:
            # Stdin is fed on its own thread so the wait below starts at once.
            threading.Thread(target=_feed_stdin, args=(proc, input_text), daemon=True).start()
        proc.wait(timeout=max(0.01, timeout_seconds))
    except subprocess.TimeoutExpired:
        logger.warning("Killing %s after %.2fs timeout (pid %s)", cmd[0], timeout_seconds, proc.pid)
        timed_out = True
    finally:
        kill_process_tree(proc)
        proc.wait()

    stdout.join(_DRAIN_SECONDS)
    if stderr is not None:
        stderr.join(_DRAIN_SECONDS)
    truncated = stdout.truncated or (stderr is not None and stderr.truncated)
    if truncated:
        logger.info("Output of %s truncated at %s characters", cmd[0], max_output_chars)
    return ProcessOutcome(
        stdout=stdout.text(),
        stderr=stderr.text() if stderr is not None else "",
        returncode=proc.returncode,
        timed_out=timed_out,
        truncated=truncated,
    )
