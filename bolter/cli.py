#!/usr/bin/env python3
"""
bolter command line.

Manage multi-architecture native binaries as OCI artifacts:

    bolter push myregistry.io/app:v1.0.0 \\
        -b linux/amd64=./bin/app-linux-amd64 \\
        -b linux/arm64=./bin/app-linux-arm64
    bolter list myregistry.io/app:v1.0.0
    bolter pull myregistry.io/app:v1.0.0 ./app --platform linux/arm64
    bolter run myregistry.io/app:v1.0.0 -- --help
    bolter cached
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from . import __version__
from .config import load_config, setup_logging
from .errors import BolterError
from .operations import (
    PullOptions,
    RunOptions,
    list_cached,
    list_platforms,
    pull,
    push,
    run,
)


def format_size(size: int) -> str:
    """Human-readable byte count, e.g. ``1.5 MB``."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"


def format_time(when: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Relative age of a timestamp, e.g. ``3 hours ago``."""
    if when is None:
        return "unknown"
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = (now - when).total_seconds()

    if seconds < 60:
        return "just now"
    for limit, size, name in ((3600, 60, "minute"), (86400, 3600, "hour"), (7 * 86400, 86400, "day")):
        if seconds < limit:
            count = int(seconds // size)
            return f"1 {name} ago" if count == 1 else f"{count} {name}s ago"
    return when.strftime("%Y-%m-%d")


def _common_flags(suppress: bool) -> argparse.ArgumentParser:
    # subcommand copies use SUPPRESS so flags given before the command survive
    default = argparse.SUPPRESS if suppress else None
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--registry", "-r", default=default,
                        help="Default OCI registry for references without one (e.g., localhost:5000)")
    parser.add_argument("--insecure", action="store_true",
                        default=argparse.SUPPRESS if suppress else False,
                        help="Allow insecure (plain HTTP) registry connections")
    parser.add_argument("--verbose", "-v", action="store_true",
                        default=argparse.SUPPRESS if suppress else False,
                        help="Enable verbose output")
    parser.add_argument("--username", "-u", default=default, help="Registry username")
    parser.add_argument("--password", "-p", default=default, help="Registry password")
    parser.add_argument("--cache-dir", default=default, help="Cache directory (default: ~/.cache/bolter)")
    parser.add_argument("--config", default=default, help="YAML configuration file")
    return parser


def build_parser() -> argparse.ArgumentParser:
    common = _common_flags(suppress=True)
    parser = argparse.ArgumentParser(
        prog="bolter",
        description="Manage multi-architecture native binaries as OCI artifacts",
        parents=[_common_flags(suppress=False)],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    push_parser = subparsers.add_parser("push", parents=[common],
                                        help="Push multi-architecture binaries as OCI artifacts")
    push_parser.add_argument("reference", help="Target repository:tag")
    push_parser.add_argument("--bin", "-b", action="append", dest="bindings", default=[],
                             metavar="OS/ARCH=PATH",
                             help="Platform mapping in format os/arch=path (repeatable)")

    pull_parser = subparsers.add_parser("pull", parents=[common],
                                        help="Pull a binary for the current or specified platform")
    pull_parser.add_argument("reference", help="Artifact repository:tag")
    pull_parser.add_argument("output", nargs="?", default="binary",
                             help="Output path (default: ./binary)")
    pull_parser.add_argument("--platform", help="Platform to pull (e.g., linux/amd64)")
    pull_parser.add_argument("--no-cache", action="store_true",
                             help="Ignore cached binaries, always download")

    run_parser = subparsers.add_parser("run", parents=[common],
                                       help="Execute a binary from the registry")
    run_parser.add_argument("reference", help="Artifact repository:tag")
    run_parser.add_argument("args", nargs="*", help="Arguments for the binary (use -- before flags)")
    run_parser.add_argument("--platform", help="Platform to execute (e.g., linux/amd64)")
    run_parser.add_argument("--no-cache", action="store_true",
                            help="Don't use cached binaries, always download")

    list_parser = subparsers.add_parser("list", parents=[common],
                                        help="List available architectures for an artifact")
    list_parser.add_argument("reference", help="Artifact repository:tag")

    subparsers.add_parser("cached", parents=[common], help="List locally cached binaries")

    return parser


def split_passthrough(argv: List[str]) -> Tuple[List[str], List[str]]:
    """Split ``argv`` at the first ``--``; the tail goes to the binary untouched."""
    if "--" in argv:
        position = argv.index("--")
        return argv[:position], argv[position + 1:]
    return argv, []


def _print_progress(position: int, total: int, platform) -> None:
    print(f"[{position}/{total}] Pushing {platform}...", flush=True)


def cmd_push(args, config) -> int:
    result = push(args.reference, args.bindings, config, progress=_print_progress)
    print(f"\nSuccessfully pushed {len(result.manifests)} binaries to {args.reference}")
    print(f"Manifest digest: {result.index.digest}")
    return 0


def cmd_pull(args, config) -> int:
    options = PullOptions(output=args.output, platform=args.platform, no_cache=args.no_cache)
    info = pull(args.reference, options, config)
    source = " (from cache)" if info.cached else ""
    print(f"Successfully pulled to {info.path}{source}")
    return 0


def cmd_run(args, config) -> int:
    options = RunOptions(platform=args.platform, no_cache=args.no_cache, replace_process=True)
    return run(args.reference, args.args, options, config)


def cmd_list(args, config) -> int:
    listing = list_platforms(args.reference, config)
    if config.verbose:
        print(f"Resolved: {listing.descriptor.digest}")
        print(f"Media Type: {listing.descriptor.media_type}")

    if listing.is_index:
        print(f"Available platforms ({len(listing.platforms)}):")
        for entry in listing.platforms:
            print(f"  {entry.platform} (digest: {entry.digest}, size: {entry.size} bytes)")
    else:
        print("Single platform manifest:")
        if listing.platform is not None:
            print(f"  Platform: {listing.platform}")
        print(f"  Layers: {len(listing.layers)}")
        for i, layer in enumerate(listing.layers):
            print(f"    [{i}] {layer.digest} (size: {layer.size} bytes)")
    return 0


def cmd_cached(args, config) -> int:
    entries = list_cached(config)
    if not entries:
        print("No cached binaries found")
        return 0

    print(f"Cached binaries ({len(entries)}):\n")
    for entry in entries:
        print(f"  {entry.reference}")
        print(f"    Platform: {entry.platform}")
        print(f"    Digest: {entry.digest}")
        print(f"    Size: {format_size(entry.size)}")
        print(f"    Cached: {format_time(entry.cached_at)}")
        if config.verbose:
            print(f"    Path: {entry.path}")
        print()
    return 0


COMMANDS = {
    "push": cmd_push,
    "pull": cmd_pull,
    "run": cmd_run,
    "list": cmd_list,
    "cached": cmd_cached,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()

    own_args, passthrough = split_passthrough(argv)
    args = parser.parse_args(own_args)

    if not args.command:
        parser.print_help()
        return 1
    if passthrough:
        if args.command != "run":
            parser.error("'--' is only supported by the run command")
        args.args = list(args.args) + passthrough

    try:
        config = load_config(
            args.config,
            registry=args.registry,
            username=args.username,
            password=args.password,
            insecure=args.insecure or None,
            verbose=args.verbose or None,
            cache_dir=args.cache_dir,
        )
        setup_logging(config)
        return COMMANDS[args.command](args, config)
    except BolterError as e:
        print(f"Error: {args.command} failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
