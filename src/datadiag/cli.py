"""Command-line interface for datadiag compile/legend workflows."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Optional

from .document import compile_document, document_legend_configs, document_legends, load_document
from .errors import DatadiagError, DocumentError, MissingDataSourceError
from .legend import LegendConfig, render_legends_svg
from .resources import load_cheatsheet
from .templates import ExpandOptions

logger = logging.getLogger("datadiag")

SUBCOMMANDS_HINT = "Use one of: compile, legend, cheatsheet."


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="datadiag",
        description="Expand data-driven diagram templates and synthesize legends.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    compile_parser = subparsers.add_parser("compile", help="Expand templates into styled nodes and edges")
    compile_parser.add_argument("input", nargs="?", help="Input .json document")
    compile_parser.add_argument("--text", help="Raw JSON document")
    compile_parser.add_argument("--stdout", action="store_true", help="Write JSON to stdout")
    compile_parser.add_argument("-o", "--output", help="Output .json path")
    compile_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on the first bad record or mapping instead of reporting diagnostics",
    )
    compile_parser.add_argument(
        "--no-safe-navigation",
        dest="safe_navigation",
        action="store_false",
        help="Treat missing intermediate fields as failures",
    )

    legend_parser = subparsers.add_parser("legend", help="Render legends as an SVG fragment")
    legend_parser.add_argument("input", nargs="?", help="Input .json document")
    legend_parser.add_argument("--text", help="Raw JSON document")
    legend_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    legend_parser.add_argument("-o", "--output", help="Output .svg path")
    legend_parser.add_argument("--no-border", dest="show_border", action="store_false")
    legend_parser.add_argument("--background", help="Legend background color")

    subparsers.add_parser("cheatsheet", help="Print the document format quick reference")

    return parser


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )

    if text is not None:
        return text, "<text>", None

    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError(
                "E_IO_READ",
                f"input file not found: {input_path}",
                exit_code=2,
                file=str(input_path),
            )
        try:
            return input_path.read_text(), str(input_path), input_path
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read input file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Use a subcommand with FILE, --text, or pipe stdin.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe a JSON document into stdin.",
            exit_code=2,
        )
    return data, "<stdin>", None


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content)
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, DocumentError):
        return CliError(
            exc.code,
            exc.message,
            hint="Check the document structure with `datadiag cheatsheet`.",
            exit_code=2,
        )
    if isinstance(exc, MissingDataSourceError):
        return CliError(
            exc.code,
            exc.message,
            hint="Add the data source under \"sources\" or fix the template's \"from\".",
            exit_code=3,
        )
    if isinstance(exc, DatadiagError):
        return CliError(
            exc.code,
            exc.message,
            hint="Check template and style mapping declarations.",
            exit_code=3,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _emit_output(content: str, args: argparse.Namespace, default_path: Optional[Path]) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )
    if args.stdout or (default_path is None and not args.output):
        sys.stdout.write(content)
        if not content.endswith("\n"):
            sys.stdout.write("\n")
        return 0

    output_path = Path(args.output) if args.output else default_path
    _write_text(output_path, content)
    print(f"Wrote {output_path}")
    return 0


def _handle_compile(args: argparse.Namespace) -> int:
    source, source_name, source_path = _read_input(args.input, args.text)
    document = load_document(source)
    options = ExpandOptions(safe_navigation=args.safe_navigation, strict=args.strict)
    compiled = compile_document(document, options=options)
    for diagnostic in compiled["diagnostics"]:
        logger.info("%s: %s %s", source_name, diagnostic["code"], diagnostic["message"])
    default_path = source_path.with_name(source_path.stem + ".compiled.json") if source_path else None
    return _emit_output(json.dumps(compiled, indent=2), args, default_path)


def _handle_legend(args: argparse.Namespace) -> int:
    source, _source_name, source_path = _read_input(args.input, args.text)
    document = load_document(source)
    legends = document_legends(document)
    overrides = {"show_border": args.show_border}
    if args.background:
        overrides["background_color"] = args.background
    configs = [replace(config or LegendConfig(), **overrides) for config in document_legend_configs(document)]
    svg_text = render_legends_svg(legends, configs=configs)
    default_path = source_path.with_name(source_path.stem + ".legend.svg") if source_path else None
    return _emit_output(svg_text, args, default_path)


def _configure_logging(debug_enabled: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug_enabled else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError("E_ARGS", "missing subcommand", hint=SUBCOMMANDS_HINT, exit_code=2)
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("DATADIAG_DEBUG") == "1"
    _configure_logging(debug_enabled)
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format

        if args.command == "compile":
            return _handle_compile(args)
        if args.command == "legend":
            return _handle_legend(args)
        if args.command == "cheatsheet":
            print(load_cheatsheet())
            return 0

        raise CliError("E_ARGS", "missing subcommand", hint=SUBCOMMANDS_HINT, exit_code=2)
    except UsageError as exc:
        err = CliError("E_ARGS", str(exc), hint=SUBCOMMANDS_HINT, exit_code=2)
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
