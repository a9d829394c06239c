from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from metaprov.adapters.request import RequestError, load_request
from metaprov.app import build_services, clear_mappings, generate_ids, provision, show_mappings
from metaprov.config import ConfigurationError, configure_logging
from metaprov.domain.errors import ProvisioningError
from metaprov.domain.pipeline import CancellationToken, VariantOutcome
from metaprov.ui.progress import LoggingProgressSink

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from metaprov.domain.pipeline import RunResult

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_USAGE = 2
EXIT_VARIANT_FAILED = 3


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Not an integer: {value}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError("Value must be at least 1")
    return number


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision DHIS2 metadata hierarchies")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug output, including every stage transition",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    provision_cmd = subparsers.add_parser(
        "provision",
        help="Reconcile and create the metadata described by a request file",
    )
    provision_cmd.add_argument("request_file", help="Path to a JSON provisioning request")
    provision_cmd.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 3 when any variant fails",
    )

    mapping = subparsers.add_parser("mapping", help="Inspect or reset the id-mapping cache")
    mapping_sub = mapping.add_subparsers(dest="mapping_command", required=True)
    mapping_sub.add_parser("show", help="List every stored id mapping")
    mapping_sub.add_parser("clear", help="Delete the stored id mappings")

    uid = subparsers.add_parser("uid", help="Generate DHIS2-compatible identifiers")
    uid.add_argument(
        "--count",
        type=_positive_int,
        default=1,
        help="Number of identifiers to print (default 1)",
    )

    return parser.parse_args(list(argv))


def _report(result: RunResult) -> None:
    for variant in result.variants:
        if variant.outcome is VariantOutcome.COMPLETED and variant.collection is not None:
            log.info(
                "%s: collection %s (%s)",
                variant.variant.key,
                variant.collection.remote_id,
                variant.collection.origin,
            )
        elif variant.outcome is VariantOutcome.FAILED:
            log.error(
                "%s: failed at %s: %s", variant.variant.key, variant.failed_stage, variant.error
            )
        else:
            log.warning("%s: %s", variant.variant.key, variant.outcome)
    summary = result.summary
    log.info(
        "Summary: created=%s, failed=%s, cancelled=%s",
        summary["created"],
        summary["failed"],
        summary["cancelled"],
    )


def _run_provision(args: argparse.Namespace, cancel: CancellationToken) -> int:
    request = load_request(args.request_file)
    services = build_services(sink=LoggingProgressSink())
    result = provision(request, services=services, cancel=cancel)
    _report(result)
    if args.strict and result.summary["failed"]:
        return EXIT_VARIANT_FAILED
    return EXIT_OK


def _run_mapping(args: argparse.Namespace) -> int:
    if args.mapping_command == "show":
        entries = show_mappings()
        for entry in entries:
            print(
                f"{entry.resource_type.collection}\t{entry.foreign_id}\t{entry.local_id}"
                f"\t{entry.discovered_at.isoformat()}"
            )
        log.info("%s id mapping(s)", len(entries))
    else:
        cleared = clear_mappings()
        log.info("Cleared %s id mapping(s)", cleared)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_USAGE

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    cancel = CancellationToken()

    def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
        """Stop after the current stage on the first Ctrl+C."""
        if cancel.cancelled:
            log.info("Closed by user (Ctrl+C)")
            sys.exit(130)
        log.warning("Cancelling after the current stage (Ctrl+C again to abort)")
        cancel.cancel()

    if parsed_args.command == "provision":
        signal(SIGINT, sigint_handler)

    try:
        if parsed_args.command == "provision":
            return _run_provision(parsed_args, cancel)
        if parsed_args.command == "mapping":
            return _run_mapping(parsed_args)
        if parsed_args.command == "uid":
            for value in generate_ids(parsed_args.count):
                print(value)
            return EXIT_OK
        raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except (ConfigurationError, RequestError) as exc:
        log.error("%s", exc)  # noqa: TRY400
        return EXIT_USAGE
    except ProvisioningError:
        log.exception("Fatal error during provisioning")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
