"""Main entry point for imapbiff."""

import logging
import os
import sys

from .config import load_config
from .errors import ConfigurationError
from .notifier import DesktopNotifier
from .supervisor import Supervisor

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
# imapclient logs every command at DEBUG
logging.getLogger("imapclient").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def main() -> None:
    """Load the configuration and watch every account until killed."""
    try:
        logger.info("Loading configuration...")
        config = load_config()
        logger.info(f"Loaded {len(config.accounts)} account(s) from {config.config_path}")

        supervisor = Supervisor(config, DesktopNotifier(config.notifier))
        supervisor.run()

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(130)


if __name__ == "__main__":
    main()
