"""
Studio booking agent entry point.

Usage:
    Console chat:  python main.py console [--scenario booking|info|handoff]
    Learning pass: python main.py learn --records learning_records.json
"""

import logging
import sys

from studio_agent.config import settings

logger = logging.getLogger(__name__)

USAGE = "Usage: python main.py {console|learn} [options]"


def _run_console_mode() -> None:
    """Chat with the agent in the terminal."""
    from console_demo import main as console_main

    console_main()


def _run_learning_mode() -> None:
    """Batch pattern mining and knowledge-base improvement."""
    from studio_agent.learning.run_learning import main as learning_main

    learning_main()


MODES = {
    "console": _run_console_mode,
    "learn": _run_learning_mode,
}


if __name__ == "__main__":
    if len(sys.argv) < 2 or sys.argv[1] not in MODES:
        sys.stderr.write(USAGE + "\n")
        sys.exit(2)
    mode = sys.argv.pop(1)
    logger.info("Starting %s in %s mode", settings.agent_name, mode)
    MODES[mode]()
