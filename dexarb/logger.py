# dexarb/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from datetime import datetime, timezone
from typing import List, Any, Optional

from .models import TradeResult

AUDIT_HEADER = ["timestamp", "strategy", "event", "success", "profit", "volume", "descriptor", "error"]


class AsyncAuditLogger:
    """
    Non-blocking CSV audit trail for cycle results and position events.
    Disk I/O runs in a background worker fed by an asyncio Queue, so the
    trading loop never waits on the filesystem.
    """
    def __init__(self, filepath: Optional[str]):
        self.filepath = filepath
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task = None

    @property
    def enabled(self) -> bool:
        return bool(self.filepath)

    async def start(self):
        """
        Creates the log file (with header) if missing and starts the background writer.
        """
        if not self.enabled:
            return

        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(self.filepath):
            async with aiofiles.open(self.filepath, mode='w', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(AUDIT_HEADER)

        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_row(self, data: List[Any]):
        if not self.enabled:
            return
        await self._queue.put(data)

    async def log_result(self, result: TradeResult, event: str = "cycle"):
        await self.log_row([
            datetime.fromtimestamp(result.timestamp, tz=timezone.utc).isoformat(),
            result.strategy,
            event,
            result.success,
            f"{result.profit:.6f}",
            f"{result.volume:.6f}",
            result.descriptor,
            result.error or "",
        ])

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except Exception as e:
                # Disk trouble must not take the engine down
                print(f"AUDIT LOG FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()

    async def stop(self):
        """Flushes queued rows and stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None


def setup_console_logger(name: str, level: str):
    """
    Sets up the standard Python logger for console output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
