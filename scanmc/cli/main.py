"""CLI Entry Point for scanmc
=========================

Entry point for console script: scanmc [args]
"""

import logging
import sys

from scanmc.cli.args_parser import create_parser, validate_args
from scanmc.cli.commands import dispatch_command
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns
    -------
    int
        Process exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger("scanmc").setLevel(logging.DEBUG)

    errors = validate_args(args)
    if errors:
        for error in errors:
            logger.error(error)
        return 2

    logger.debug(f"Arguments: {vars(args)}")

    try:
        result = dispatch_command(args)
    except KeyboardInterrupt:
        logger.info("Sampling interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        logger.debug("Full traceback:", exc_info=True)
        return 1

    if result.get("success", False):
        logger.info(f"scanmc {args.command} completed successfully")
        return 0

    logger.error(f"scanmc {args.command} failed: {result.get('error', 'Unknown error')}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
