import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict

from .file_manager import FileRegistry
from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    deleted: int
    failed: int
    started_at: datetime
    finished_at: datetime
    errors: Dict[str, str]


class ExpiryReaper:
    """
    Retires files whose expiry has passed. Owns no timer: a scheduler
    (cron, the CLI, a bot's job queue) decides when to call run_once().
    """

    def __init__(self, files: FileRegistry, *, clock: Callable[[], datetime] = utcnow):
        self.files = files
        self.clock = clock

    def run_once(self) -> SweepResult:
        started_at = self.clock()
        errors: Dict[str, str] = {}

        def _record_failure(file_id: str, exc: Exception) -> None:
            errors[file_id] = f"{type(exc).__name__}: {exc}"

        logger.debug("Running expired files cleanup")
        deleted = self.files.sweep_expired(on_failure=_record_failure)
        result = SweepResult(
            deleted=deleted,
            failed=len(errors),
            started_at=started_at,
            finished_at=self.clock(),
            errors=errors,
        )
        if deleted or errors:
            logger.info("Expired files cleanup: %d deleted, %d failed", deleted, len(errors))
        return result
