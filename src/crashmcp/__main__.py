"""Run the CRASH MCP server over stdio: ``python -m crashmcp``."""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv

from crashmcp.config import CrashConfig
from crashmcp.config import load_config
from crashmcp.server import configure
from crashmcp.server import mcp

logger = logging.getLogger("crashmcp")


def _enabled(flag: bool) -> str:
    return "enabled" if flag else "disabled"


def log_startup_banner(config: CrashConfig) -> None:
    """Log the effective configuration once at startup."""
    logger.info("CRASH MCP server starting")
    logger.info("  strict mode: %s", config.validation.strict_mode)
    logger.info("  revisions: %s", _enabled(config.features.enable_revisions))
    logger.info("  branching: %s", _enabled(config.features.enable_branching))
    logger.info(
        "  confidence tracking: %s", _enabled(config.features.enable_confidence)
    )
    logger.info("  sessions: %s", _enabled(config.features.enable_sessions))
    logger.info("  output format: %s", config.display.output_format)
    logger.info("  max history: %d steps", config.system.max_history_size)
    logger.info("  max branch depth: %d", config.system.max_branch_depth)
    if config.validation.strict_mode:
        logger.info("Running in strict mode: prefixes and known purposes enforced")
    else:
        logger.info("Running in flexible mode")


def main() -> None:
    # stdout carries the MCP stdio transport
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv(override=False)
    config = load_config()
    log_startup_banner(config)
    configure(config)
    mcp.run()


if __name__ == "__main__":
    main()
