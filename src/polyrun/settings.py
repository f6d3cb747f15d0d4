from __future__ import annotations

import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_BUILTIN_SETTINGS: dict[str, dict[str, Any]] = {
    "engine": {
        "workspace_root": "",
        "workspace_prefix": "polyrun-",
        "process_deadline_seconds": 10,
        "embedded_deadline_seconds": 5,
        "max_output_kb": 128,
    },
    "embedded": {
        "mode": "restrict",
        "interpreter_timeout_seconds": 4.5,
        "memory_limit_mb": 256,
        "blocked_imports": [
            "os",
            "subprocess",
            "socket",
            "ctypes",
            "importlib",
            "shutil",
            "signal",
            "multiprocessing",
            "threading",
        ],
        "blocked_builtins": ["eval", "exec", "open", "compile", "breakpoint", "input"],
        "allowed_imports": [],
        "allowed_builtins": [],
        "environ_keys": ["LANG", "LC_ALL", "TZ"],
    },
    "packaged": {
        "launcher": ["npx", "electron", "."],
        "timeout_seconds": 10,
        "app_name": "polyrun-app",
        "app_version": "1.0.0",
        "env": {"ELECTRON_RUN_AS_NODE": "1"},
    },
    "compiled": {
        "compiler": ["csc"],
        "binary_launcher": [],
        "compile_timeout_seconds": 10,
        "run_timeout_seconds": 5,
        "fallback_on_compile_failure": True,
    },
}


def _default_settings_path() -> Path:
    """Return bundled default settings TOML path.

    Example:
        ```python
        path = _default_settings_path()
        ```
    """
    return Path(__file__).with_name("default_settings.toml")


def _read_settings_toml(path: Path) -> dict[str, Any]:
    """Read a settings TOML file and return its top-level tables.

    Example:
        ```python
        raw = _read_settings_toml(Path("/tmp/polyrun.toml"))
        ```
    """
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    for name, table in raw.items():
        if not isinstance(table, dict):
            raise ValueError(f"Settings section '{name}' must be a TOML table")
    return raw


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay settings tables one level deep.

    Example:
        ```python
        merged = _merge({"engine": {"max_output_kb": 1}}, {"engine": {"max_output_kb": 2}})
        ```
    """
    merged = {name: dict(table) for name, table in base.items()}
    for name, table in override.items():
        merged.setdefault(name, {}).update(table)
    return merged


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings settings field.

    Example:
        ```python
        blocked = _list_of_str(["os", "subprocess"], "blocked_imports")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


def _positive(value: float, field_name: str) -> None:
    """Reject zero or negative durations and sizes.

    Example:
        ```python
        _positive(5, "timeout_seconds")
        ```
    """
    if value <= 0:
        raise ValueError(f"'{field_name}' must be greater than zero")


def _default_tables() -> dict[str, Any]:
    """Return bundled default tables, or built-ins when the file is absent.

    Example:
        ```python
        tables = _default_tables()
        ```
    """
    path = _default_settings_path()
    if not path.exists():
        return _merge(_BUILTIN_SETTINGS, {})
    return _merge(_BUILTIN_SETTINGS, _read_settings_toml(path))


_DEFAULTS = _default_tables()
_ENGINE_DEFAULTS = _DEFAULTS["engine"]
_EMBEDDED_DEFAULTS = _DEFAULTS["embedded"]
_PACKAGED_DEFAULTS = _DEFAULTS["packaged"]
_COMPILED_DEFAULTS = _DEFAULTS["compiled"]


@dataclass(slots=True)
class EmbeddedSettings:
    """Interpreter policy for the embedded runtime.

    Example:
        ```python
        embedded = EmbeddedSettings(blocked_imports=["os"], interpreter_timeout_seconds=2)
        ```
    """

    mode: str = str(_EMBEDDED_DEFAULTS["mode"])
    interpreter_timeout_seconds: float = float(_EMBEDDED_DEFAULTS["interpreter_timeout_seconds"])
    memory_limit_mb: int = int(_EMBEDDED_DEFAULTS["memory_limit_mb"])
    blocked_imports: list[str] = field(
        default_factory=lambda: _list_of_str(_EMBEDDED_DEFAULTS["blocked_imports"], "blocked_imports")
    )
    blocked_builtins: list[str] = field(
        default_factory=lambda: _list_of_str(_EMBEDDED_DEFAULTS["blocked_builtins"], "blocked_builtins")
    )
    allowed_imports: list[str] = field(
        default_factory=lambda: _list_of_str(_EMBEDDED_DEFAULTS["allowed_imports"], "allowed_imports")
    )
    allowed_builtins: list[str] = field(
        default_factory=lambda: _list_of_str(_EMBEDDED_DEFAULTS["allowed_builtins"], "allowed_builtins")
    )
    environ_keys: list[str] = field(
        default_factory=lambda: _list_of_str(_EMBEDDED_DEFAULTS["environ_keys"], "environ_keys")
    )

    def __post_init__(self) -> None:
        """Validate mode and limits after dataclass initialization.

        Example:
            ```python
            EmbeddedSettings(mode="allow")
            ```
        """
        if self.mode not in {"allow", "restrict"}:
            raise ValueError("mode must be 'allow' or 'restrict'")
        _positive(self.interpreter_timeout_seconds, "interpreter_timeout_seconds")
        _positive(self.memory_limit_mb, "memory_limit_mb")

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "EmbeddedSettings":
        """Create embedded settings from a parsed TOML table.

        Example:
            ```python
            embedded = EmbeddedSettings.from_mapping({"mode": "restrict"})
            ```
        """
        merged = {**_EMBEDDED_DEFAULTS, **raw}
        return cls(
            mode=str(merged["mode"]),
            interpreter_timeout_seconds=float(merged["interpreter_timeout_seconds"]),
            memory_limit_mb=int(merged["memory_limit_mb"]),
            blocked_imports=_list_of_str(merged["blocked_imports"], "blocked_imports"),
            blocked_builtins=_list_of_str(merged["blocked_builtins"], "blocked_builtins"),
            allowed_imports=_list_of_str(merged["allowed_imports"], "allowed_imports"),
            allowed_builtins=_list_of_str(merged["allowed_builtins"], "allowed_builtins"),
            environ_keys=_list_of_str(merged["environ_keys"], "environ_keys"),
        )


@dataclass(slots=True)
class PackagedSettings:
    """Launcher settings for the packaged-application runtime.

    Example:
        ```python
        packaged = PackagedSettings(launcher=["npx", "electron", "."])
        ```
    """

    launcher: list[str] = field(
        default_factory=lambda: _list_of_str(_PACKAGED_DEFAULTS["launcher"], "launcher")
    )
    timeout_seconds: float = float(_PACKAGED_DEFAULTS["timeout_seconds"])
    app_name: str = str(_PACKAGED_DEFAULTS["app_name"])
    app_version: str = str(_PACKAGED_DEFAULTS["app_version"])
    env: dict[str, str] = field(
        default_factory=lambda: {str(k): str(v) for k, v in _PACKAGED_DEFAULTS["env"].items()}
    )

    def __post_init__(self) -> None:
        """Validate launcher command and timeout.

        Example:
            ```python
            PackagedSettings(launcher=["node", "main.js"])
            ```
        """
        if not self.launcher:
            raise ValueError("'launcher' must name at least the launcher executable")
        _positive(self.timeout_seconds, "timeout_seconds")

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "PackagedSettings":
        """Create packaged settings from a parsed TOML table.

        Example:
            ```python
            packaged = PackagedSettings.from_mapping({"launcher": ["node", "."]})
            ```
        """
        merged = {**_PACKAGED_DEFAULTS, **raw}
        if not isinstance(merged["env"], dict):
            raise ValueError("'env' must be a TOML table")
        return cls(
            launcher=_list_of_str(merged["launcher"], "launcher"),
            timeout_seconds=float(merged["timeout_seconds"]),
            app_name=str(merged["app_name"]),
            app_version=str(merged["app_version"]),
            env={str(k): str(v) for k, v in merged["env"].items()},
        )


@dataclass(slots=True)
class CompiledSettings:
    """Toolchain settings for the compile-and-run runtime.

    Example:
        ```python
        compiled = CompiledSettings(compiler=["mcs"], binary_launcher=["mono"])
        ```
    """

    compiler: list[str] = field(
        default_factory=lambda: _list_of_str(_COMPILED_DEFAULTS["compiler"], "compiler")
    )
    binary_launcher: list[str] = field(
        default_factory=lambda: _list_of_str(_COMPILED_DEFAULTS["binary_launcher"], "binary_launcher")
    )
    compile_timeout_seconds: float = float(_COMPILED_DEFAULTS["compile_timeout_seconds"])
    run_timeout_seconds: float = float(_COMPILED_DEFAULTS["run_timeout_seconds"])
    fallback_on_compile_failure: bool = bool(_COMPILED_DEFAULTS["fallback_on_compile_failure"])

    def __post_init__(self) -> None:
        """Validate compiler command and timeouts.

        Example:
            ```python
            CompiledSettings(compile_timeout_seconds=20)
            ```
        """
        if not self.compiler:
            raise ValueError("'compiler' must name at least the compiler executable")
        _positive(self.compile_timeout_seconds, "compile_timeout_seconds")
        _positive(self.run_timeout_seconds, "run_timeout_seconds")

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "CompiledSettings":
        """Create compiled settings from a parsed TOML table.

        Example:
            ```python
            compiled = CompiledSettings.from_mapping({"compiler": ["mcs"]})
            ```
        """
        merged = {**_COMPILED_DEFAULTS, **raw}
        return cls(
            compiler=_list_of_str(merged["compiler"], "compiler"),
            binary_launcher=_list_of_str(merged["binary_launcher"], "binary_launcher"),
            compile_timeout_seconds=float(merged["compile_timeout_seconds"]),
            run_timeout_seconds=float(merged["run_timeout_seconds"]),
            fallback_on_compile_failure=bool(merged["fallback_on_compile_failure"]),
        )


@dataclass(slots=True)
class EngineSettings:
    """Top-level execution engine configuration.

    Example:
        ```python
        settings = EngineSettings.from_file("/etc/polyrun.toml")
        ```
    """

    workspace_root: str = str(_ENGINE_DEFAULTS["workspace_root"])
    workspace_prefix: str = str(_ENGINE_DEFAULTS["workspace_prefix"])
    process_deadline_seconds: float = float(_ENGINE_DEFAULTS["process_deadline_seconds"])
    embedded_deadline_seconds: float = float(_ENGINE_DEFAULTS["embedded_deadline_seconds"])
    max_output_kb: int = int(_ENGINE_DEFAULTS["max_output_kb"])
    embedded: EmbeddedSettings = field(default_factory=EmbeddedSettings)
    packaged: PackagedSettings = field(default_factory=PackagedSettings)
    compiled: CompiledSettings = field(default_factory=CompiledSettings)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate deadlines and their ordering.

        Example:
            ```python
            EngineSettings(embedded_deadline_seconds=5)
            ```
        """
        _positive(self.process_deadline_seconds, "process_deadline_seconds")
        _positive(self.embedded_deadline_seconds, "embedded_deadline_seconds")
        _positive(self.max_output_kb, "max_output_kb")
        if not self.workspace_prefix or "/" in self.workspace_prefix:
            raise ValueError("'workspace_prefix' must be a non-empty name without '/'")
        if self.embedded.interpreter_timeout_seconds >= self.embedded_deadline_seconds:
            raise ValueError(
                "'interpreter_timeout_seconds' must be shorter than 'embedded_deadline_seconds'"
            )

    @classmethod
    def from_file(cls, config_path: str) -> "EngineSettings":
        """Create settings from a TOML file layered over the bundled defaults.

        Example:
            ```python
            settings = EngineSettings.from_file("/tmp/polyrun.toml")
            ```
        """
        raw = _read_settings_toml(Path(config_path))
        return cls.from_mapping(raw, config_path=config_path)

    @classmethod
    def from_mapping(cls, raw: dict[str, Any], config_path: str | None = None) -> "EngineSettings":
        """Create settings from parsed TOML tables layered over the defaults.

        Example:
            ```python
            settings = EngineSettings.from_mapping({"engine": {"max_output_kb": 64}})
            ```
        """
        engine = {**_ENGINE_DEFAULTS, **raw.get("engine", {})}
        return cls(
            workspace_root=str(engine["workspace_root"]),
            workspace_prefix=str(engine["workspace_prefix"]),
            process_deadline_seconds=float(engine["process_deadline_seconds"]),
            embedded_deadline_seconds=float(engine["embedded_deadline_seconds"]),
            max_output_kb=int(engine["max_output_kb"]),
            embedded=EmbeddedSettings.from_mapping(raw.get("embedded", {})),
            packaged=PackagedSettings.from_mapping(raw.get("packaged", {})),
            compiled=CompiledSettings.from_mapping(raw.get("compiled", {})),
            config_path=config_path,
        )

    def resolved_workspace_root(self) -> Path:
        """Return the directory under which workspaces are created.

        Example:
            ```python
            root = settings.resolved_workspace_root()
            ```
        """
        return Path(self.workspace_root or tempfile.gettempdir())

    def deadline_for(self, kind: str) -> float:
        """Return the overall deadline in seconds for a runtime kind value.

        Example:
            ```python
            seconds = settings.deadline_for("embedded")
            ```
        """
        if kind == "embedded":
            return self.embedded_deadline_seconds
        return self.process_deadline_seconds
