"""
Command-line entry point — wires the engine and runs one subcommand.

Composition root: loads settings, configures logging, constructs the
CertificateEngine and hands it to the selected command.

Commands:
  inspect FILE...   JSON summary of every certificate and key found
  chains FILE...    reconstructed chains, leaf → root, by subject CN
  bundle FILE...    concatenated PEM bundle of one chain (+ key)
  serve             run the HTTP API under uvicorn

Exit status: 0 success, 1 unreadable input or configuration error,
2 a PKCS#12 file needs a (different) password.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

import structlog
from railway import ErrorCode
from railway.result import Failure, Result, Success

from certchain import __version__
from certchain.config import AppSettings
from certchain.domain.bundle import pair_keys_by_source
from certchain.domain.models import ParseResult
from certchain.engine import CertificateEngine

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NEEDS_PASSWORD = 2


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured console logging on stderr.

    stdout is reserved for command output (JSON, chains, bundles).
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certchain",
        description="Decode TLS certificate material and rebuild certificate chains.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    inspect = commands.add_parser("inspect", help="print decoded certificates and keys as JSON")
    inspect.add_argument("files", nargs="+", type=Path)
    inspect.add_argument("--password", help="password for PKCS#12 files")

    chains = commands.add_parser("chains", help="print reconstructed chains")
    chains.add_argument("files", nargs="+", type=Path)
    chains.add_argument("--password", help="password for PKCS#12 files")

    bundle = commands.add_parser("bundle", help="write a PEM bundle for one chain")
    bundle.add_argument("files", nargs="+", type=Path)
    bundle.add_argument("--password", help="password for PKCS#12 files")
    bundle.add_argument("--key", type=Path, help="file holding the private key to append")
    bundle.add_argument("--chain", type=int, default=0, help="index of the chain to bundle (default 0)")
    bundle.add_argument("-o", "--output", type=Path, help="write here instead of stdout")

    serve = commands.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", help="bind address (default from settings)")
    serve.add_argument("--port", type=int, help="bind port (default from settings)")

    return parser


# ─────────────────────── Input loading ───────────────────────


def _read_file(engine: CertificateEngine, path: Path, password: str | None) -> Result[ParseResult]:
    return Result.from_computation(
        path.read_bytes, ErrorCode.VALIDATION_ERROR, f"Cannot read {path}"
    ).flat_map(lambda data: engine.parse(data, path.name, password, source=path.name))


def read_inputs(
    engine: CertificateEngine, paths: Sequence[Path], password: str | None
) -> tuple[ParseResult, list[str]]:
    """
    Parse every file and merge the results.

    Returns the merged result and one problem line per file that failed or
    is locked; `needs_password` is set if any PKCS#12 file is locked.
    """
    merged = ParseResult()
    problems: list[str] = []
    locked = False
    for path in paths:
        match _read_file(engine, path, password):
            case Success(parsed):
                merged.certificates.extend(parsed.certificates)
                merged.private_keys.extend(parsed.private_keys)
                merged.warnings.extend(f"{path.name}: {warning}" for warning in parsed.warnings)
                if parsed.needs_password:
                    locked = True
                    problems.append(f"{path}: password required (use --password)")
            case Failure(error):
                problems.append(f"{path}: {error.message}")
    return replace(merged, needs_password=locked), problems


def _report(problems: list[str], parsed: ParseResult) -> int:
    for line in [*problems, *parsed.warnings]:
        print(f"certchain: {line}", file=sys.stderr)  # noqa: T201
    if parsed.needs_password:
        return EXIT_NEEDS_PASSWORD
    return EXIT_ERROR if problems else EXIT_OK


# ─────────────────────── Commands ───────────────────────


def run_inspect(engine: CertificateEngine, args: argparse.Namespace) -> int:
    parsed, problems = read_inputs(engine, args.files, args.password)
    print(json.dumps(parsed.summary(), indent=2))  # noqa: T201
    return _report(problems, parsed)


def run_chains(engine: CertificateEngine, args: argparse.Namespace) -> int:
    parsed, problems = read_inputs(engine, args.files, args.password)
    for index, chain in enumerate(engine.build_chains(parsed.certificates)):
        status = "complete" if chain.is_complete else "incomplete"
        print(f"chain {index} ({status}): {' -> '.join(chain.common_names())}")  # noqa: T201
    return _report(problems, parsed)


def run_bundle(engine: CertificateEngine, args: argparse.Namespace) -> int:
    parsed, problems = read_inputs(engine, args.files, args.password)
    exit_code = _report(problems, parsed)
    if exit_code != EXIT_OK:
        return exit_code

    chains = engine.build_chains(parsed.certificates)
    if not 0 <= args.chain < len(chains):
        print(f"certchain: no chain {args.chain} ({len(chains)} found)", file=sys.stderr)  # noqa: T201
        return EXIT_ERROR
    chain = chains[args.chain]

    if args.key is not None:
        key_result, key_problems = read_inputs(engine, [args.key], args.password)
        if key_problems or not key_result.private_keys:
            print(f"certchain: no private key in {args.key}", file=sys.stderr)  # noqa: T201
            return EXIT_ERROR
        key = key_result.private_keys[0]
    else:
        key = pair_keys_by_source([chain.leaf], parsed.private_keys)[0][1]

    text = engine.bundle(chain, key) + "\n"
    if args.output is None:
        sys.stdout.write(text)
    else:
        args.output.write_text(text, encoding="utf-8")
    return EXIT_OK


def run_serve(settings: AppSettings, args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "certchain.asgi:app",
        host=args.host or settings.api.host,
        port=args.port or settings.api.port,
        log_level=settings.log_level.lower(),
    )
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, wire dependencies and run the selected command."""
    args = build_parser().parse_args(argv)

    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        return EXIT_ERROR

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.debug("app.starting", version=__version__, command=args.command)

    if args.command == "serve":
        return run_serve(settings, args)

    engine = CertificateEngine.from_settings(settings)
    commands = {"inspect": run_inspect, "chains": run_chains, "bundle": run_bundle}
    return commands[args.command](engine, args)


if __name__ == "__main__":
    sys.exit(main())
