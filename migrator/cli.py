"""Command line entry point for the record migration engine."""

import argparse
import logging
import sys
from typing import List, Optional

from .config import MigrationConfig
from .errors import MigrationError
from .orchestrator import MigrationOrchestrator

logger = logging.getLogger(__name__)


def console_prompt(message: str) -> bool:
    """Ask a yes/no question on the console. Anything but yes aborts."""
    try:
        answer = input(f"{message} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def always_continue(message: str) -> bool:
    logger.info(f"{message} -> yes (--yes)")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Record Migration Engine - Move related records between record stores"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run a migration")
    run_parser.add_argument("--config", required=True, help="Path to migration config file")
    run_parser.add_argument("--output-dir", help="Override the output directory of the config")
    run_parser.add_argument("--yes", "-y", action="store_true", help="Answer yes to every prompt")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command == "run":
        return run_migration(args)

    parser.print_help()
    return 2


def run_migration(args) -> int:
    """Run a migration from config file."""
    try:
        config = MigrationConfig.from_json_file(args.config)
        if args.output_dir:
            config.output_dir = args.output_dir

        orchestrator = MigrationOrchestrator(
            config,
            prompt=always_continue if args.yes else console_prompt,
        )
        result = orchestrator.run_migration()
    except MigrationError as e:
        logger.error(f"Migration failed: {e}")
        return 1

    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE")
    print("=" * 60)
    print(f"Status: {result.status.value}")
    print(f"Execution order: {', '.join(result.execution_order)}")
    print(f"Records Processed: {result.total_records_processed}")
    print(f"Succeeded: {result.total_records_succeeded}")
    print(f"Failed: {result.total_records_failed}")
    print(f"Unprocessed: {result.total_records_unprocessed}")
    print(f"Missing parent lookups: {result.missing_parent_lookups}")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")
    return 0


if __name__ == "__main__":
    sys.exit(main())
