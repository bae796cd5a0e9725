#!/usr/bin/env python3
"""CLI entry point for atomic-apply.

Commands:
- apply: Apply manifests as a single transaction (converge or roll back)
"""

import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

COMMANDS = {
    "apply": "Apply manifests atomically (converge or roll back)",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Installed package version ('dev' when running from a checkout)."""
    try:
        return version('atomic-apply')
    except PackageNotFoundError:
        return 'dev'


def print_usage() -> None:
    """Print top-level usage showing commands."""
    print(f"atomic-apply {get_version()}")
    print()
    print("Usage: atomic-apply <command> [options]")
    print()
    print("Commands:")
    for command, desc in COMMANDS.items():
        print(f"  {command:<12} {desc}")
    print()
    print("Run 'atomic-apply <command> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  atomic-apply apply -f deploy.yaml")
    print("  atomic-apply apply -f ./manifests -R --timeout 2m -n staging")
    print("  cat app.yaml | atomic-apply apply -f - --json-output")


def dispatch(command: str, argv: list) -> int:
    """Dispatch to the command's CLI handler.

    Args:
        command: The command (e.g., "apply")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if command == "apply":
        from transaction.cli import apply_main
        rc: int = apply_main(argv)
        return rc

    print(f"Error: Unknown command '{command}'", file=sys.stderr)
    print_usage()
    return 2


def main(argv: Optional[list] = None) -> int:
    """CLI entry point."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0
    if argv[0] == '--version':
        print(f"atomic-apply {get_version()}")
        return 0

    return dispatch(argv[0], argv[1:])


if __name__ == '__main__':
    sys.exit(main())
