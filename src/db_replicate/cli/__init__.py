"""CLI for dumping and loading record graphs between databases.

Usage:
    db-replicate profiles
    db-replicate dump --profile prod --models myapp.models:Base --type User --id 7 -o user.dump
    db-replicate load --profile local --models myapp.models:Base user.dump
    db-replicate load --profile local --models myapp.models:Base user.dump --dry-run
    db-replicate validate user.dump

Commands:
    profiles  - List available profiles
    dump      - Dump records and their configured associations to a file
    load      - Load a dump file into a profile's database
    validate  - Check a dump file and show per-type counts
"""

import argparse
import sys
from collections import Counter
from pathlib import Path

from rich.console import Console
from rich.table import Table

from db_replicate.config.loader import load_db_config
from db_replicate.dumper import Dumper
from db_replicate.factory import (
    ProfileNotFoundError,
    get_active_profile_name,
    open_store,
)
from db_replicate.loader import Loader, ProductionGuardError
from db_replicate.records.base import UnknownTypeError
from db_replicate.transport import FORMATS, TransportError, open_reader, open_writer

console = Console(stderr=True)


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


def _coerce_id(value: str) -> int | str:
    return int(value) if value.isdigit() else value


def _open_mode(fmt: str, write: bool) -> str:
    return ("w" if write else "r") + ("b" if fmt == "pickle" else "")


# ============================================================================
# Command implementations
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List profiles from the config file."""
    try:
        config = load_db_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    if not config.profiles:
        console.print("[yellow]No profiles configured.[/yellow]")
        return 0

    table = Table(title="Profiles")
    table.add_column("Name", style="cyan")
    table.add_column("Provider")
    table.add_column("Description")
    for name, profile in config.profiles.items():
        table.add_row(name, profile.provider, profile.description)
    console.print(table)
    return 0


def cmd_dump(args: argparse.Namespace) -> int:
    """Dump root records of one type to a file."""
    try:
        config = load_db_config(args.config)
        profile_name = get_active_profile_name(args.profile, args.env_prefix)
    except (FileNotFoundError, ValueError, ProfileNotFoundError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    try:
        with open_store(config, profile_name, args.models) as store:
            record_class = store.record_class(args.type)
            roots = []
            for raw_id in args.ids:
                record = record_class.get(_coerce_id(raw_id))
                if record is None:
                    console.print(f"[bold red]x[/bold red] {args.type} {raw_id} not found")
                    return 1
                roots.append(record)

            with open(args.output, _open_mode(args.format, write=True)) as f:
                dumper = Dumper(store)
                dumper.listen(open_writer(f, args.format))
                dumper.log_to(verbose=args.verbose, quiet=args.quiet)
                dumper.dump(
                    *roots,
                    associations=_split(args.associations),
                    attributes=_split(args.attributes),
                )
                dumper.complete()
    except (ProfileNotFoundError, UnknownTypeError, ImportError, OSError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    return 0


def cmd_load(args: argparse.Namespace) -> int:
    """Load a dump file into the profile's database."""
    try:
        config = load_db_config(args.config)
        profile_name = get_active_profile_name(args.profile, args.env_prefix)
    except (FileNotFoundError, ValueError, ProfileNotFoundError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    try:
        with open_store(config, profile_name, args.models, commit=not args.dry_run) as store:
            loader = Loader(store, allow_production=args.allow_production)
            loader.log_to(verbose=args.verbose, quiet=args.quiet)
            with open(args.input, _open_mode(args.format, write=False)) as f:
                loader.read(f, format=args.format)
            loader.complete()
    except (ProfileNotFoundError, ProductionGuardError, TransportError, ImportError, OSError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    if args.dry_run:
        console.print("[dim]Dry run: changes rolled back.[/dim]")

    total_failed = sum(loader.failures.values())
    if total_failed > 0:
        console.print(f"[yellow]Load completed with {total_failed} failures[/yellow]")
        return 1
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Read a dump file without touching a database."""
    counts: Counter[str] = Counter()
    try:
        with open(args.input, _open_mode(args.format, write=False)) as f:
            for type_name, _, _ in open_reader(f, args.format):
                counts[type_name] += 1
    except (OSError, TransportError) as e:
        console.print(f"[bold red]x[/bold red] Invalid dump: {e}")
        return 1

    table = Table(title=str(args.input))
    table.add_column("Type", style="cyan")
    table.add_column("Count", justify="right")
    for type_name, count in sorted(counts.items()):
        table.add_row(type_name, str(count))
    console.print(table)
    console.print(f"[bold green]v[/bold green] {sum(counts.values())} replicants")
    return 0


# ============================================================================
# Parser
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-replicate",
        description="Replicate record graphs between databases",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to replicate.toml (default: ./replicate.toml)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help="Prefix for the DB_PROFILE environment variable",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    subparsers.required = True

    profiles_parser = subparsers.add_parser("profiles", help="List available profiles")
    profiles_parser.set_defaults(func=cmd_profiles)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--format", choices=FORMATS, default="pickle", help="Dump file format")
        p.add_argument("--verbose", "-v", action="store_true", help="Print every object")
        p.add_argument("--quiet", "-q", action="store_true", help="Print only totals")

    def add_store(p: argparse.ArgumentParser) -> None:
        p.add_argument("--profile", "-p", help="Profile name from replicate.toml")
        p.add_argument("--models", "-m", required=True, help="Declarative base as module:Base")

    dump_parser = subparsers.add_parser("dump", help="Dump records to a file")
    add_store(dump_parser)
    add_common(dump_parser)
    dump_parser.add_argument("--type", "-t", required=True, help="Root record type name")
    dump_parser.add_argument("--id", action="append", dest="ids", required=True, help="Root id (repeatable)")
    dump_parser.add_argument("--associations", help="Extra associations for the roots (comma-separated)")
    dump_parser.add_argument("--attributes", help="Extra attributes for the roots (comma-separated)")
    dump_parser.add_argument("--output", "-o", required=True, help="Output file path")
    dump_parser.set_defaults(func=cmd_dump)

    load_parser = subparsers.add_parser("load", help="Load a dump file")
    add_store(load_parser)
    add_common(load_parser)
    load_parser.add_argument("input", help="Dump file path")
    load_parser.add_argument("--dry-run", action="store_true", help="Roll back instead of committing")
    load_parser.add_argument(
        "--allow-production",
        action="store_true",
        help="Allow loading when DB_REPLICATE_ENV=production",
    )
    load_parser.set_defaults(func=cmd_load)

    validate_parser = subparsers.add_parser("validate", help="Validate a dump file")
    validate_parser.add_argument("input", help="Dump file path")
    validate_parser.add_argument("--format", choices=FORMATS, default="pickle", help="Dump file format")
    validate_parser.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
