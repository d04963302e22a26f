"""CLI entry point.

With no arguments the interactive REPL starts; otherwise the arguments are
run as a single command, e.g. `shardline upload big.bin --replicas 2`.
"""

import os
import sys

from common.logging_config import setup_logging
from cli.constants import HELP_TEXT
from cli.parser import ParseError, parse_tokens
from cli.repl import dispatch_command, repl_loop


def run_once(args: list[str]) -> int:
    """
    Run one command from argv.

    Returns:
        Process exit code
    """
    if args[0] == "help":
        print(HELP_TEXT)
        return 0
    try:
        cmd_obj = parse_tokens(args)
    except ParseError as e:
        print(f"Error: {e}")
        return 2
    result = dispatch_command(cmd_obj)
    print(result)
    return 1 if result.startswith("Error:") else 0


def main() -> None:
    """Entry point for CLI."""
    args = sys.argv[1:]
    debug = '--debug' in args
    log_level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'WARNING' if args else 'INFO')

    logger = setup_logging('cli', log_level=log_level)

    if debug:
        logger.info("Debug logging enabled")
        args = [arg for arg in args if arg != '--debug']

    if args:
        sys.exit(run_once(args))

    logger.info("CLI starting...")
    try:
        repl_loop()
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")


if __name__ == "__main__":
    main()
