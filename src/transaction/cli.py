"""CLI handler for the 'apply' command.

Usage:
    atomic-apply apply -f <file> [-f <file> ...] [-R] [--timeout 30s]
                       [--poll-interval 2s] [-n <namespace>]
                       [--kubeconfig <path>] [--context <name>]
                       [--json-output] [--verbose]
"""

import argparse
import json
import logging
import sys
from typing import Optional

from config import load_config, parse_duration
from errors import AtomicApplyError, ConfigError
from manifest import ManifestLoader
from transaction.executor import AtomicApply
from transaction.outcome import TransactionOutcome
from transaction.printer import ProgressPrinter

logger = logging.getLogger(__name__)


def _duration(value: str) -> float:
    """argparse type for duration flags."""
    try:
        return parse_duration(value)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(e.message)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='atomic-apply apply',
        description='Apply manifests as a single transaction: every resource '
                    'converges, or every change is rolled back',
    )
    parser.add_argument(
        '--filename', '-f',
        action='append',
        default=[],
        metavar='FILE',
        help="Manifest file, directory, glob, URL, or '-' for stdin (repeatable)",
    )
    parser.add_argument(
        '--recursive', '-R',
        action='store_true',
        help='Process directories given with -f recursively',
    )
    parser.add_argument(
        '--timeout',
        type=_duration,
        help='How long to wait for resources to become ready (e.g. 30s, 2m)',
    )
    parser.add_argument(
        '--poll-interval',
        type=_duration,
        help='Interval between status polls (e.g. 2s)',
    )
    parser.add_argument(
        '--namespace', '-n',
        help='Namespace for namespaced resources that do not set one',
    )
    parser.add_argument(
        '--kubeconfig',
        help='Path to the kubeconfig file',
    )
    parser.add_argument(
        '--context',
        help='kubeconfig context to use',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs and progress to stderr)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _emit_json(outcome: Optional[TransactionOutcome], error: Optional[AtomicApplyError] = None) -> None:
    """Emit structured JSON output."""
    if outcome is not None:
        output = outcome.to_dict()
    else:
        output = {
            'status': 'aborted',
            'success': False,
            'message': error.message if error else '',
            'duration_seconds': 0.0,
            'items': [],
        }
        if error is not None:
            output['error'] = {'code': error.code, 'message': error.message}
    print(json.dumps(output, indent=2))


def _make_resolver(config):
    # Imported lazily so --help works without the kubernetes client configured
    from cluster.kube import KubeResolver
    return KubeResolver.from_config(kubeconfig=config.kubeconfig, context=config.context)


def apply_main(argv: list) -> int:
    """Handle 'apply' command."""
    parser = _parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    if not args.filename:
        parser.print_usage(sys.stderr)
        print("Error: at least one --filename/-f must be specified", file=sys.stderr)
        return 2

    try:
        config = load_config(
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            default_namespace=args.namespace,
            kubeconfig=args.kubeconfig,
            context=args.context,
        )
        objects = ManifestLoader(recursive=args.recursive).load(args.filename)
    except AtomicApplyError as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.json_output:
            _emit_json(None, e)
        return 1

    try:
        resolver = _make_resolver(config)
    except Exception as e:
        print(f"Error: cannot connect to cluster: {e}", file=sys.stderr)
        return 1

    logger.info(f"Applying {len(objects)} object(s) with timeout {config.timeout}s")

    printer = ProgressPrinter(stream=sys.stderr if args.json_output else None)
    outcome = AtomicApply(resolver, config, printer=printer).run(objects)

    if args.json_output:
        _emit_json(outcome)

    if not outcome.success:
        print(f"Error: {outcome.error}", file=sys.stderr)
    return outcome.exit_code
