"""
Workflow utilities: logging setup and structured (JSON) lifecycle events.
"""
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    # requests/urllib3 connection chatter only with --verbose
    if not verbose:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def log_structured(level: str, **kwargs: Any) -> None:
    """Emit one structured (JSON) log line, e.g. for clip state transitions."""
    record = {"level": level, **kwargs}
    line = json.dumps(record, default=str)
    if level == "error":
        logger.error("%s", line)
    elif level == "warning":
        logger.warning("%s", line)
    elif level == "debug":
        logger.debug("%s", line)
    else:
        logger.info("%s", line)
