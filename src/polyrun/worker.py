from __future__ import annotations

import builtins
import contextlib
import heapq
import io
import itertools
import json
import math
import sys
import time
import types
import warnings
from typing import Any, Callable, TextIO

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except Exception:  # pragma: no cover - platform specific
    _resource = None


class _Reply:
    """Line-oriented JSON channel back to the parent process."""

    def __init__(self, stream: TextIO, max_output_chars: int) -> None:
        self._stream = stream
        self._remaining = max_output_chars
        self.truncated = False

    def output(self, text: str) -> None:
        if not text or self._remaining <= 0:
            if text:
                self.truncated = True
            return
        if len(text) > self._remaining:
            text = text[: self._remaining]
            self.truncated = True
        self._remaining -= len(text)
        self._send({"type": "output", "text": text})

    def result(self, ok: bool, exit_code: int, error: str | None) -> None:
        self._send(
            {
                "type": "result",
                "ok": ok,
                "exit_code": exit_code,
                "error": error,
                "truncated": self.truncated,
            }
        )

    def _send(self, record: dict[str, Any]) -> None:
        self._stream.write(json.dumps(record) + "\n")
        self._stream.flush()


class _Channel(io.TextIOBase):
    """Writable text stream that feeds the merged capture, prefixing each line."""

    def __init__(self, reply: _Reply, prefix: str = "") -> None:
        self._reply = reply
        self._prefix = prefix
        self._at_line_start = True

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if not self._prefix:
            self._reply.output(text)
            return len(text)
        pieces: list[str] = []
        for line in text.splitlines(keepends=True):
            if self._at_line_start:
                pieces.append(self._prefix)
            pieces.append(line)
            self._at_line_start = line.endswith("\n")
        self._reply.output("".join(pieces))
        return len(text)


class _Console:
    """Replacement console whose methods all land in the merged capture."""

    def __init__(self, reply: _Reply) -> None:
        self._reply = reply

    def _emit(self, prefix: str, args: tuple[Any, ...]) -> None:
        self._reply.output(prefix + " ".join(str(arg) for arg in args) + "\n")

    def log(self, *args: Any) -> None:
        self._emit("", args)

    info = log
    debug = log

    def error(self, *args: Any) -> None:
        self._emit("Error: ", args)

    def warn(self, *args: Any) -> None:
        self._emit("Warning: ", args)

    warning = warn


class _Timers:
    """Deferred callbacks that run after the main script, in due-time order."""

    def __init__(self) -> None:
        self._queue: list[tuple[float, int, int]] = []
        self._entries: dict[int, tuple[Callable[..., Any], tuple[Any, ...], float | None]] = {}
        self._ids = itertools.count(1)
        self._seq = itertools.count()

    def set_timeout(self, callback: Callable[..., Any], seconds: float = 0, *args: Any) -> int:
        return self._schedule(callback, seconds, args, None)

    def set_interval(self, callback: Callable[..., Any], seconds: float = 0, *args: Any) -> int:
        return self._schedule(callback, seconds, args, max(0.0, float(seconds)))

    def clear(self, timer_id: int | None) -> None:
        if timer_id is not None:
            self._entries.pop(timer_id, None)

    def _schedule(
        self,
        callback: Callable[..., Any],
        seconds: float,
        args: tuple[Any, ...],
        interval: float | None,
    ) -> int:
        if not callable(callback):
            raise TypeError("timer callback must be callable")
        timer_id = next(self._ids)
        self._entries[timer_id] = (callback, args, interval)
        due = time.monotonic() + max(0.0, float(seconds))
        heapq.heappush(self._queue, (due, next(self._seq), timer_id))
        return timer_id

    def drain(self) -> None:
        while self._queue:
            due, _, timer_id = heapq.heappop(self._queue)
            entry = self._entries.get(timer_id)
            if entry is None:
                continue
            delay = due - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            callback, args, interval = entry
            if interval is None:
                self._entries.pop(timer_id, None)
            else:
                heapq.heappush(self._queue, (time.monotonic() + interval, next(self._seq), timer_id))
            callback(*args)


def _set_limits(memory_limit_mb: int, cpu_seconds: float) -> list[str]:
    errors: list[str] = []
    if _resource is None:
        errors.append("RLIMIT limits unavailable on this platform")
        return errors

    mem_bytes = int(memory_limit_mb) * 1024 * 1024
    limits = [
        ("RLIMIT_AS", mem_bytes),
        ("RLIMIT_CPU", int(math.ceil(cpu_seconds)) + 1),
    ]
    for name, value in limits:
        try:
            which = getattr(_resource, name)
            _, current_hard = _resource.getrlimit(which)
            if current_hard in (-1, _resource.RLIM_INFINITY):
                target_hard = value
            else:
                target_hard = min(value, current_hard)
            _resource.setrlimit(which, (min(value, target_hard), target_hard))
        except (AttributeError, ValueError, OSError) as exc:
            errors.append(f"{name} not applied: {exc}")
    return errors


def _safe_import_factory_mode(
    mode: str,
    allowed_imports: set[str],
    blocked_imports: set[str],
) -> Callable[..., Any]:
    def _safe_import(
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> Any:
        if name == "importlib" or name.startswith("importlib."):
            raise ImportError("Import 'importlib' is blocked by policy")

        root = name.split(".")[0]
        if mode == "allow":
            if root not in allowed_imports:
                raise ImportError(f"Import '{name}' is not allowed by policy")
        elif root in blocked_imports:
            raise ImportError(f"Import '{name}' is blocked by policy")
        return __import__(name, globals, locals, fromlist, level)

    return _safe_import


def _require_factory(safe_import: Callable[..., Any]) -> Callable[[str], Any]:
    def require(name: str) -> Any:
        safe_import(name)
        return sys.modules[name]

    return require


def _build_safe_builtins(
    mode: str,
    allowed_builtins: set[str],
    blocked_builtins: set[str],
    safe_import: Any,
) -> dict[str, Any]:
    safe = {}
    for name, value in vars(builtins).items():
        if mode == "allow":
            if name not in allowed_builtins:
                continue
        elif name in blocked_builtins:
            continue
        safe[name] = value

    safe["__import__"] = safe_import
    return safe


def _build_bindings(
    *,
    safe_builtins: dict[str, Any],
    safe_import: Callable[..., Any],
    console: _Console,
    timers: _Timers,
    environ: dict[str, str],
    filename: str,
) -> dict[str, Any]:
    # Allow-list: nothing from this module's globals leaks into user code.
    return {
        "__builtins__": safe_builtins,
        "__name__": "__main__",
        "__file__": filename,
        "console": console,
        "require": _require_factory(safe_import),
        "environ": types.MappingProxyType(dict(environ)),
        "Buffer": bytearray,
        "set_timeout": timers.set_timeout,
        "set_interval": timers.set_interval,
        "clear_timeout": timers.clear,
        "clear_interval": timers.clear,
        "sleep": time.sleep,
    }


def _normalize_system_exit(exit_code: Any) -> tuple[bool, int, str | None]:
    if exit_code in (None, 0):
        return True, 0, None
    if isinstance(exit_code, int):
        return False, exit_code, f"SystemExit: {exit_code}"
    return False, 1, f"SystemExit: {exit_code}"


def main() -> int:
    req = json.loads(sys.stdin.read() or "{}")
    code: str = req.get("code", "")
    filename = str(req.get("filename", "/sandbox/main.py"))
    environ = {str(k): str(v) for k, v in (req.get("environ") or {}).items()}
    policy = req.get("policy", {})

    memory_limit_mb = int(policy.get("memory_limit_mb", 256))
    cpu_seconds = float(policy.get("cpu_seconds", 5))
    max_output_kb = int(policy.get("max_output_kb", 128))
    mode = str(policy.get("mode", "restrict"))
    allowed_imports = set(policy.get("allowed_imports", []))
    blocked_imports = set(policy.get("blocked_imports", []))
    allowed_builtins = set(policy.get("allowed_builtins", []))
    blocked_builtins = set(policy.get("blocked_builtins", []))

    reply = _Reply(sys.stdout, max_output_kb * 1024)

    if mode not in {"allow", "restrict"}:
        reply.result(False, 1, "ValueError: mode must be 'allow' or 'restrict'")
        return 1

    _set_limits(memory_limit_mb=memory_limit_mb, cpu_seconds=cpu_seconds)

    try:
        byte_code = compile(code, filename, "exec")
    except (SyntaxError, ValueError) as exc:
        reply.result(False, 1, f"{type(exc).__name__}: {exc}")
        return 1

    safe_import = _safe_import_factory_mode(mode, allowed_imports, blocked_imports)
    console = _Console(reply)
    timers = _Timers()
    exec_globals = _build_bindings(
        safe_builtins=_build_safe_builtins(mode, allowed_builtins, blocked_builtins, safe_import),
        safe_import=safe_import,
        console=console,
        timers=timers,
        environ=environ,
        filename=filename,
    )

    def _show_warning(message: Any, category: Any, *args: Any, **kwargs: Any) -> None:
        console.warn(message)

    ok, exit_code, error = True, 0, None
    try:
        with (
            contextlib.redirect_stdout(_Channel(reply)),
            contextlib.redirect_stderr(_Channel(reply, prefix="Error: ")),
            warnings.catch_warnings(),
        ):
            warnings.simplefilter("always")
            warnings.showwarning = _show_warning
            try:
                exec(byte_code, exec_globals, exec_globals)
                timers.drain()
            except SystemExit as exc:
                ok, exit_code, error = _normalize_system_exit(exc.code)
                if isinstance(exc.code, str):
                    sys.stderr.write(f"{exc.code}\n")
    except Exception as exc:
        ok, exit_code, error = False, 1, f"{type(exc).__name__}: {exc}"

    reply.result(ok, exit_code, error)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
