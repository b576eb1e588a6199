"""Injectable time source for polling and artifact timestamps."""

import asyncio
import time
from datetime import datetime, timezone


class Clock:
    """Wall clock, monotonic clock and sleep backed by the running event loop."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def epoch_millis(moment: datetime) -> int:
    """Millisecond epoch timestamp; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)
