"""
Scanning Command Handlers.

- startScan: Trigger a backend database update
- getScanStatus: Report whether an update is running and the song count

Both read the backend state with one pipelined command list, so the status
and the song count are consistent with each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mpdsonic.protocol.mpd import Frame
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.reply import Reply

logger = logging.getLogger(__name__)


@dataclass
class ScanStatus(Reply):
    field_name = "scanStatus"

    scanning: bool
    count: int


def _scan_status(stats: Frame, status: Frame) -> ScanStatus:
    try:
        count = int(stats.get("songs") or 0)
    except ValueError:
        count = 0
    return ScanStatus(scanning=status.get("updating_db") is not None, count=count)


async def start_scan(ctx: HandlerContext) -> ScanStatus:
    async with ctx.pool.acquire() as conn:
        update, stats, status = await conn.command_list([("update",), ("stats",), ("status",)])
    logger.info("Started database update (job %s)", update.get("updating_db"))
    return _scan_status(stats, status)


async def get_scan_status(ctx: HandlerContext) -> ScanStatus:
    async with ctx.pool.acquire() as conn:
        stats, status = await conn.command_list([("stats",), ("status",)])
    return _scan_status(stats, status)
