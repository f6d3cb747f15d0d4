from __future__ import annotations

import argparse
import json
import logging
import sys
from functools import partial
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from polyrun import EngineSettings, ExecutionCoordinator, ExecutionRequest
from polyrun.execution.capabilities import probe_toolchain

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m prun")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _add_global_options(parser: argparse.ArgumentParser, *, with_defaults: bool) -> None:
    """Add --config and --log-level, accepted before or after the subcommand.

    Subcommand copies default to SUPPRESS so they never overwrite a value
    given before the subcommand.

    Example:
        ```python
        _add_global_options(run_cmd, with_defaults=False)
        ```
    """
    parser.add_argument(
        "--config",
        default=None if with_defaults else argparse.SUPPRESS,
        help=(
            "Path to a settings TOML file layered over the bundled defaults.\n"
            "Example: --config /etc/polyrun.toml"
        ),
    )
    parser.add_argument(
        "--log-level",
        default="WARNING" if with_defaults else argparse.SUPPRESS,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Engine log level written to stderr (default: WARNING).",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running programs through the execution engine.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m prun",
        description=(
            "polyrun CLI\n"
            "Run one program through the execution engine in a throwaway workspace.\n"
            "Every run is time-boxed and its workspace is removed afterwards."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m prun run hello.py --kind embedded\n"
            "  python -m prun run Program.cs --kind compiled\n"
            "  python -m prun run main.js --kind packaged --entry-point main.js\n"
            "  cat hello.py | python -m prun run - --kind embedded --json\n"
            "  python -m prun kinds --config polyrun.toml"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_global_options(parser, with_defaults=True)

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run one program and print its captured output.",
        description=(
            "Run one program file (or '-' for stdin) with the selected runtime kind.\n"
            "Exit status: 0 on success, 1 on execution failure, 2 on a rejected request."
        ),
        epilog=(
            "Examples:\n"
            "  python -m prun run hello.py --kind embedded\n"
            "  python -m prun run Program.cs --kind cs --json\n"
            "  python -m prun run main.js --kind packaged --config polyrun.toml"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_global_options(run_cmd, with_defaults=False)
    run_cmd.add_argument("source", help="Program file to run, or '-' to read from stdin.")
    run_cmd.add_argument(
        "--kind",
        required=True,
        help="Runtime kind: embedded, packaged or compiled (aliases: node, electron, cs).",
    )
    run_cmd.add_argument(
        "--entry-point",
        help="Entry-point filename inside the workspace (default depends on --kind).",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the response body as JSON instead of a panel.",
    )

    kinds_cmd = sub.add_parser(
        "kinds",
        help="List runtime kinds and external tool availability.",
        description=(
            "Show every runtime kind with its default entry point, deadline,\n"
            "external tool, and whether that tool is on PATH."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_global_options(kinds_cmd, with_defaults=False)

    return parser


def _configure_logging(level: str) -> None:
    """Send engine logs to stderr through Rich.

    Example:
        ```python
        _configure_logging("INFO")
        ```
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        handlers=[RichHandler(console=_ERR_CONSOLE, show_path=False)],
        force=True,
    )


def build_coordinator(args: argparse.Namespace) -> ExecutionCoordinator:
    """Create an ExecutionCoordinator from global CLI flags.

    Example:
        ```python
        coordinator = build_coordinator(args)
        ```
    """
    settings = EngineSettings.from_file(args.config) if args.config else EngineSettings()
    return ExecutionCoordinator(settings)


def _read_source(source: str) -> str:
    """Read program text from a file path or stdin.

    Example:
        ```python
        code = _read_source("hello.py")
        ```
    """
    if source == "-":
        return sys.stdin.read()
    with open(source, encoding="utf-8") as handle:
        return handle.read()


def _print_result(body: dict[str, Any]) -> None:
    """Render a response body in a rich panel.

    Example:
        ```python
        _print_result({"succeeded": True, "output": "hi"})
        ```
    """
    if body["succeeded"]:
        title = "Output" if not body.get("fallback") else "Output (fallback)"
        _CONSOLE.print(Panel(Text(body.get("output", "")), title=title, border_style="green"))
        if body.get("diagnostic"):
            _CONSOLE.print(Text(f"{body['diagnostic']}: {body.get('detail', '')}", style="yellow"))
        return
    _CONSOLE.print(
        Panel.fit(
            Text.assemble((body["diagnostic"], "bold red"), "\n", body.get("detail", "")),
            border_style="red",
        )
    )
    if body.get("output"):
        _CONSOLE.print(Panel(Text(body["output"]), title="Partial output", border_style="yellow"))


def _print_kinds(coordinator: ExecutionCoordinator) -> None:
    """Render runtime kinds and tool availability in a rich table.

    Example:
        ```python
        _print_kinds(coordinator)
        ```
    """
    settings = coordinator.settings
    statuses = probe_toolchain(settings)
    table = Table(title="Runtime Kinds")
    table.add_column("Kind", style="cyan")
    table.add_column("Entry Point", style="magenta")
    table.add_column("Deadline")
    table.add_column("Tool")
    table.add_column("Available")
    for kind in coordinator.registry.kinds():
        executor = coordinator.registry.resolve(kind.value)
        status = statuses[kind]
        if status.available:
            available = "[green]yes[/green]"
        elif status.required:
            available = "[red]no[/red]"
        else:
            available = "[yellow]no (fallback)[/yellow]"
        table.add_row(
            kind.value,
            executor.default_entry_point,
            f"{settings.deadline_for(kind.value):g}s",
            status.tool,
            available,
        )
    _CONSOLE.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `prun` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py", "--kind", "embedded"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.log_level)
    coordinator = build_coordinator(args)

    if args.command == "kinds":
        _print_kinds(coordinator)
        return 0
    if args.command == "run":
        try:
            code = _read_source(args.source)
        except OSError as exc:
            _CONSOLE.print(Panel.fit(f"Could not read '{args.source}': {exc}", style="bold red"))
            return 2
        result = coordinator.execute(
            ExecutionRequest(code=code, runtime_kind=args.kind, entry_point=args.entry_point)
        )
        body = result.to_response()
        if args.json:
            _CONSOLE.print_json(json.dumps(body))
        else:
            _print_result(body)
        if result.succeeded:
            return 0
        return 2 if result.status_code == 400 else 1

    parser.error("Unhandled command")
    return 2

