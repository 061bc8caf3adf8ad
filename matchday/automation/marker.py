"""
Trigger marker: stamps fixtures before dispatch.

This is a SOFT idempotency guard. Writing the timestamp before the HTTP call
means a crash or timeout mid-dispatch still blocks a re-trigger for the retry
buffer; the cost is possibly skipping one retry cycle. Two overlapping runs
(e.g. an invoker retry while a slow run is still dispatching) can both read
"never triggered" before either writes, and both fire. The buffer makes this
unlikely; nothing here makes it impossible.

Callers only depend on the TriggerMarker protocol, so a real lock (advisory
lock, SELECT ... FOR UPDATE SKIP LOCKED, external lease) can replace the
timestamp implementation without touching the runner.
"""

import logging
from datetime import datetime
from typing import Callable, Protocol, Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.automation.windows import Phase
from matchday.models import Fixture

logger = logging.getLogger(__name__)


class TriggerMarker(Protocol):
    async def mark_triggered(self, fixture_ids: Sequence[int], phase: Phase, at: datetime) -> None:
        """Persist that `phase` was attempted for these fixtures at `at`."""
        ...


class TimestampTriggerMarker:
    """Writes Fixture.<phase>_triggered_at and commits before returning."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def mark_triggered(self, fixture_ids: Sequence[int], phase: Phase, at: datetime) -> None:
        if phase.trigger_column is None or not fixture_ids:
            return

        column = getattr(Fixture, phase.trigger_column)
        async with self._session_factory() as session:
            await session.execute(
                update(Fixture)
                .where(Fixture.id.in_(list(fixture_ids)))
                .values({column: at})
            )
            await session.commit()

        logger.debug(
            f"[AUTOMATION] Marked {len(fixture_ids)} fixtures {phase.trigger_column}={at.isoformat()}"
        )
