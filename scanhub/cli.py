"""Command line interface: run a scan directly or start the HTTP API server."""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import sys
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Sequence

from scanhub.docker import DockerError, DockerRunner
from scanhub.models import ServerConfig, default_server_config
from scanhub.nmap import NmapParseError, parse_nmap_xml
from scanhub.server import Server
from scanhub.storage import StorageError

SUPPORTED_FORMATS = ("json",)


def _csv_list(value: str) -> list[str]:
    return value.split(",") if value else []


def _persistent_flags(suppress: bool) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--config",
        default=argparse.SUPPRESS if suppress else "",
        help="config file (default is $HOME/.scanhub.yaml)",
    )
    parser.add_argument(
        "--port",
        default=argparse.SUPPRESS if suppress else "8080",
        help="port for the HTTP server",
    )
    return parser


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser with the scan and serve commands."""
    parser = argparse.ArgumentParser(
        prog="scanhub",
        description="Port scanning from the command line or through an HTTP API.",
        parents=[_persistent_flags(suppress=False)],
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    shared = [_persistent_flags(suppress=True)]

    scan = commands.add_parser(
        "scan",
        parents=shared,
        help="execute a port scan",
        description="Scan targets directly without starting the HTTP server.",
    )
    scan.add_argument("--targets", required=True, help="scan targets, comma separated")
    scan.add_argument("--ports", default="", help="ports to scan (e.g. 80,443 or 1-1000)")
    scan.add_argument("--rate-limit", dest="rate_limit", type=int, default=0, help="scan rate limit")
    scan.add_argument("--timeout", type=int, default=0, help="timeout")
    scan.add_argument(
        "--nmap-flags",
        dest="nmap_flags",
        type=_csv_list,
        action="extend",
        default=[],
        help="extra nmap arguments, comma separated or repeated",
    )
    scan.add_argument("--output", default="", help="output file path")
    scan.add_argument("--format", default="json", help="output format (supported: json)")

    serve = commands.add_parser(
        "serve",
        parents=shared,
        help="start the HTTP API server",
        description="Serve RESTful endpoints to create, monitor and read scan tasks.",
    )
    serve.add_argument(
        "--output-dir", dest="output_dir", default="",
        help="directory to store scan results (default is ./output)",
    )
    serve.add_argument("--workers", type=int, default=5, help="number of worker threads")
    serve.add_argument(
        "--max-concurrent", dest="max_concurrent", type=int, default=10,
        help="maximum number of concurrent scans",
    )
    serve.add_argument("--queue-size", dest="queue_size", type=int, default=100, help="size of the task queue")
    serve.add_argument(
        "--rate-limit", dest="rate_limit", type=float, default=10.0,
        help="API rate limit in requests per second",
    )
    serve.add_argument(
        "--cleanup-days", dest="cleanup_days", type=int, default=7,
        help="automatically clean up scan results older than this many days",
    )
    return parser


def build_scan_command(
    targets: str,
    ports: str,
    rate_limit: int,
    timeout: int,
    nmap_flags: Sequence[str],
    xml_path: str,
) -> list[str]:
    """Return the scanner arguments for a direct scan writing XML to xml_path."""
    command = ["-a", targets]
    if ports:
        command += ["-p", ports]
    if rate_limit > 0:
        command += ["--rate", str(rate_limit)]
    if timeout > 0:
        command += ["--timeout", str(timeout)]
    if nmap_flags:
        command.append("--")
        command += list(nmap_flags)
    command += ["-oX", xml_path]
    return command


def format_result(result: Any, output_format: str) -> str:
    """Render a scan result in the requested format; raise ValueError if unsupported."""
    if output_format.lower() != "json":
        raise ValueError(f"unsupported output format: {output_format}")
    to_dict = getattr(result, "to_dict", None)
    data = to_dict() if callable(to_dict) else result
    try:
        return json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"failed to format output: {exc}") from exc


def run_scan(args: argparse.Namespace, runner_factory: Callable[[], Any] | None = None) -> None:
    """Run the scan described by parsed arguments and write or print its result."""
    if not args.targets:
        raise ValueError("a scan target must be given")
    factory = runner_factory or DockerRunner

    with tempfile.TemporaryDirectory(prefix=f"scanhub-{os.getpid()}-") as temp_dir:
        xml_path = str(Path(temp_dir) / "result.xml")
        command = build_scan_command(
            args.targets, args.ports, args.rate_limit, args.timeout, args.nmap_flags, xml_path
        )
        try:
            runner = factory()
        except DockerError as exc:
            raise RuntimeError(f"failed to initialise Docker: {exc}") from exc
        with contextlib.closing(runner):
            try:
                runner.run(command)
            except DockerError as exc:
                raise RuntimeError(f"scan execution failed: {exc}") from exc
        try:
            result = parse_nmap_xml(xml_path)
        except NmapParseError as exc:
            raise RuntimeError(f"failed to parse scan result: {exc}") from exc

    output = format_result(result, args.format)
    if not args.output:
        print(output)
        return
    try:
        Path(args.output).write_text(output, encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"failed to write output file: {exc}") from exc


def run_serve(
    args: argparse.Namespace,
    server_factory: Callable[[str, ServerConfig], Any] | None = None,
) -> None:
    """Build the API server from parsed arguments and serve until stopped."""
    output_dir = args.output_dir or str(Path.cwd() / "output")
    try:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError(f"failed to create output directory: {exc}") from exc

    config = default_server_config()
    config.worker_num = args.workers
    config.max_concurrent_scans = args.max_concurrent
    config.queue_size = args.queue_size
    config.rate_limit = args.rate_limit
    config.result_cleanup_age = timedelta(days=args.cleanup_days)

    factory = server_factory or Server
    try:
        server = factory(output_dir, config)
    except (StorageError, OSError) as exc:
        raise RuntimeError(f"failed to create API server: {exc}") from exc

    print(f"API server listening on port {args.port}...")
    print(
        f"workers: {args.workers}, max concurrent scans: {args.max_concurrent}, "
        f"queue size: {args.queue_size}"
    )
    try:
        server.run(":" + args.port)
    except OSError as exc:
        raise RuntimeError(f"failed to start API server: {exc}") from exc


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the scanhub command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    try:
        if args.command == "scan":
            run_scan(args)
        else:
            run_serve(args)
    except (ValueError, RuntimeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())