"""
============================================================================
UPTIME MONITOR - CHECK RECORDER
============================================================================
Persists probe outcomes as Check rows and keeps each resource's history
under the rolling per-resource cap.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime
from typing import Optional

from config.constants import CheckStatus, Defaults
from config.settings import MonitoringSettings
from database.models import Check
from exceptions import UptimeMonitorException
from monitoring.checkers import CheckResult
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Recorder")


class CheckRecorder:
    """
    Append-only writer for probe results.
    """

    def __init__(self, store, settings: MonitoringSettings):
        """
        Args:
            store: MonitorStore (or any object with the same check methods)
            settings: Monitoring settings; supplies the per-resource cap
        """
        self.store = store
        self.settings = settings

    async def record(
        self,
        resource,
        result: CheckResult,
        checked_at: Optional[datetime] = None,
    ) -> Check:
        """
        Append one check row for *resource* and trim its history.

        Returns:
            The stored Check
        """
        check = await self.store.append_check(
            resource.id,
            result.status.value,
            response_time=result.response_time,
            status_code=result.status_code,
            error_message=result.error_message,
            details=result.details,
            checked_at=checked_at or TimeHelper.get_utc_now(),
        )

        cap = self.settings.checks_cap_per_resource
        if cap:
            # the row is already stored; a failed trim is retried on the next append
            try:
                removed = await self.store.enforce_check_cap(resource.id, cap)
            except UptimeMonitorException as e:
                logger.warning(f"Could not trim checks for resource {resource.id}: {e}")
            else:
                if removed:
                    logger.debug(f"Trimmed {removed} old checks for resource {resource.id}")

        return check

    async def record_failure(self, resource, error: BaseException) -> Check:
        """
        Record a ``down`` row for a resource whose processing raised.
        """
        message = str(error) or type(error).__name__
        result = CheckResult(
            CheckStatus.DOWN,
            error_message=f"Internal error: {message}"[:Defaults.ERROR_MESSAGE_MAX_LENGTH],
        )
        return await self.record(resource, result)
