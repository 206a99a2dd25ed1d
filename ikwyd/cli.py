"""Command-line interface for ikwyd.

This module provides the CLI for ikwyd, supporting commands for:
- run: Back up the vault now (default when no command is given)
- list: List the vault's snapshots
- status: Show lock state, staging area and latest snapshot
- init: Create a template config for the vault
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from ikwyd import __version__
from ikwyd.backup import run_backup, EXIT_SUCCESS, EXIT_FAILURE
from ikwyd.config import (
    Configuration,
    ConfigurationError,
    config_path_for,
    create_default_config,
    get_config_dir,
    resolve_config,
)
from ikwyd.lock import VaultLock
from ikwyd.vault import Vault, list_snapshots


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog='ikwyd',
        description='Hardlinked snapshot backups with rsync'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        required=True,
        help='Vault (configuration) name, read from <config_dir>/<vault>.toml',
        metavar='VAULT'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show the run log on success and let rsync talk'
    )
    parser.add_argument(
        '--config-dir', '-d',
        type=Path,
        help='Configuration directory (default: $IKWYD_CONFIG_DIR or /etc/ikwyd)',
        metavar='DIR'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser(
        'run',
        help='Back up the vault now (default)'
    )

    list_parser = subparsers.add_parser(
        'list',
        help='List snapshots'
    )
    list_parser.add_argument(
        '--json',
        action='store_true',
        help='Output as JSON'
    )

    subparsers.add_parser(
        'status',
        help='Show vault status'
    )

    init_parser = subparsers.add_parser(
        'init',
        help='Create a template config for the vault'
    )
    init_parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Overwrite existing config file'
    )

    return parser


def load_config(args: argparse.Namespace) -> Optional[Configuration]:
    """
    Load the vault configuration.

    Returns None and prints error on failure.
    """
    try:
        return resolve_config(args.config, config_dir=args.config_dir, verbose=args.verbose)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the 'run' command - back up the vault now."""
    result = run_backup(
        vault=args.config,
        config_dir=args.config_dir,
        verbose=args.verbose,
    )
    return result.exit_code


def cmd_list(args: argparse.Namespace) -> int:
    """Execute the 'list' command - list snapshots, newest first."""
    config = load_config(args)
    if config is None:
        return EXIT_FAILURE

    snapshots = list_snapshots(config.vault_root)

    if args.json:
        output = []
        for snap in snapshots:
            output.append({
                "name": snap.name,
                "timestamp": snap.timestamp.isoformat(),
                "path": str(snap.path),
            })
        print(json.dumps(output, indent=2))
        return EXIT_SUCCESS

    if not snapshots:
        print("No snapshots found.")
        return EXIT_SUCCESS

    print(f"{'Snapshot':<20} {'Taken':<17}")
    print("-" * 38)
    for snap in snapshots:
        print(f"{snap.name:<20} {snap.timestamp.strftime('%Y-%m-%d %H:%M'):<17}")
    print("-" * 38)
    print(f"Total: {len(snapshots)} snapshot(s)")
    return EXIT_SUCCESS


def cmd_status(args: argparse.Namespace) -> int:
    """Execute the 'status' command - show vault status."""
    config = load_config(args)
    if config is None:
        return EXIT_FAILURE

    layout = Vault(config.vault_root)
    snapshots = list_snapshots(layout.root)
    locked = VaultLock(layout.root).is_locked()

    print(f"ikwyd Status: {config.vault}")
    print("=" * 40)
    print(f"Source: {config.source}")
    print(f"Vault: {layout.root}")
    print()

    if locked:
        print(f"Status: Locked ({layout.lock_path})")
    else:
        print("Status: Idle")

    if layout.staging_root.exists():
        print(f"Staging area: present ({layout.staging_root})")
    else:
        print("Staging area: none")
    print()

    if snapshots:
        latest = snapshots[0]
        print(f"Latest snapshot: {latest.name} ({latest.timestamp.strftime('%Y-%m-%d %H:%M')})")
    else:
        print("Latest snapshot: Never")
    print(f"Total snapshots: {len(snapshots)}")

    return EXIT_SUCCESS


def cmd_init(args: argparse.Namespace) -> int:
    """Execute the 'init' command - write a template config."""
    vault = args.config
    if "/" in vault or vault.startswith("."):
        print(f"Invalid vault name: '{vault}'", file=sys.stderr)
        return EXIT_FAILURE

    config_path = config_path_for(vault, get_config_dir(args.config_dir))

    if config_path.exists() and not args.force:
        print(f"Config file already exists: {config_path}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        return EXIT_FAILURE

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(create_default_config(vault))

    print(f"Created default config: {config_path}")
    print("Edit this file to configure the vault.")
    return EXIT_SUCCESS


def main(argv: list = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    command = args.command or 'run'

    try:
        if command == 'run':
            return cmd_run(args)
        elif command == 'list':
            return cmd_list(args)
        elif command == 'status':
            return cmd_status(args)
        elif command == 'init':
            return cmd_init(args)
        else:
            print(f"Unknown command: {command}", file=sys.stderr)
            return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130  # Standard exit code for SIGINT
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
