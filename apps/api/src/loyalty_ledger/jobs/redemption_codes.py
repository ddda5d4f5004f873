"""Housekeeping for expired redemption codes."""

# meta: job: redemption-code-purge

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.services.redemption_codes import RedemptionCodeEngine

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def purge_expired_redemption_codes(
    *, session_factory: SessionFactory, now: dt.datetime | None = None
) -> Dict[str, Any]:
    """Reclaim storage held by codes past their expiry, redeemed or not."""

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    async with session as managed_session:
        reference = now or dt.datetime.now(dt.timezone.utc)
        purged = await RedemptionCodeEngine(managed_session).purge_expired(now=reference)

        summary = {
            "purged": purged,
            "reference_time": reference.isoformat(),
        }
        logger.bind(summary=summary).info("Redemption code purge completed")
        return summary


__all__ = ["purge_expired_redemption_codes"]
