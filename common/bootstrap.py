import logging
import time
from typing import Callable

from common import config
from common.errors import BootstrapError

logger = logging.getLogger(__name__)


def wait_for(
    name: str,
    check: Callable[[], object],
    max_attempts: int = config.BOOTSTRAP_MAX_ATTEMPTS,
    delay: float = config.BOOTSTRAP_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Call `check` until it stops raising; give up after `max_attempts`."""
    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            check()
            logger.info("Connected to %s", name)
            return
        except Exception as e:  # noqa: BLE001
            last_error = e
            logger.info("Waiting for %s... (attempt %d/%d)", name, attempt, max_attempts)
            if attempt < max_attempts:
                sleep(delay)
    raise BootstrapError(f"{name} not ready after {max_attempts} attempts: {last_error}")
