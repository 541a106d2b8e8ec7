"""Periodic eviction of expired upload broker sessions."""

import asyncio
import logging
from typing import Optional

from dal.upload_snapshot_dal import UploadSnapshotDAL
from services.upload_broker import UploadBroker

LOGGER = logging.getLogger(__name__)


class BrokerCleaner:
    """Sweep retention-expired sessions out of the broker and refresh its snapshot."""

    def __init__(self, broker: UploadBroker, snapshot_dal: Optional[UploadSnapshotDAL] = None) -> None:
        """
        Args:
            broker: Broker whose expired sessions are removed.
            snapshot_dal: Optional snapshot store rewritten after each sweep.
        """
        self._broker = broker
        self._snapshot_dal = snapshot_dal

    async def prune_expired_sessions(self) -> int:
        """Remove expired sessions and return how many were dropped."""
        removed = self._broker.sweep_expired()
        if self._snapshot_dal is not None:
            await self._snapshot_dal.save(self._broker.snapshot())
        return removed

    async def run_periodic_cleanup(self, interval_seconds: float = 300) -> None:
        """
        Repeatedly prune expired sessions at the given interval until cancelled.

        Args:
            interval_seconds: Seconds to sleep between cleanup runs.
        """
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await self.prune_expired_sessions()
            except asyncio.CancelledError:
                break
            except Exception:
                # Keep the loop alive; the next tick retries.
                LOGGER.exception("Upload session cleanup failed")
