# storefront/ranking.py
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud

logger = logging.getLogger(__name__)

NUTZER = "nutzer"
KUNDE = "kunde"
VIP = "vip"
VIP_PLUS = "vip_plus"
NEBULA = "nebula"

THRESHOLDS = {
    VIP: Decimal("500"),
    VIP_PLUS: Decimal("1500"),
    NEBULA: Decimal("5000"),
}
VIP_RANKS = (VIP, VIP_PLUS, NEBULA)


def calculate_rank(total_spend, current_rank: Optional[str] = None) -> str:
    # nebula is never taken away automatically
    if current_rank == NEBULA:
        return NEBULA
    total = Decimal(str(total_spend or 0))
    if total >= THRESHOLDS[NEBULA]:
        return NEBULA
    if total >= THRESHOLDS[VIP_PLUS]:
        return VIP_PLUS
    if total >= THRESHOLDS[VIP]:
        return VIP
    if total > 0:
        return KUNDE
    return NUTZER


async def update_rank_for_user(db: AsyncSession, user_id: str) -> Optional[dict]:
    """Recompute lifetime spend and rank from completed/shipped requests.

    Returns ``{"old_rank", "new_rank", "total_spend"}`` when anything changed.
    """
    user = await crud.get_user(db, user_id)
    if user is None:
        return None
    total = await crud.lifetime_spend(db, user_id)
    new_rank = calculate_rank(total, user.rank)
    if user.rank == new_rank and Decimal(str(user.lifetime_spend or 0)) == total:
        return None

    old_rank = user.rank
    user.lifetime_spend = total
    user.rank = new_rank
    user.is_vip = new_rank in VIP_RANKS
    await db.commit()
    logger.info("[RANK] user %s spend %s rank %s -> %s", user_id, total, old_rank, new_rank)
    return {"old_rank": old_rank, "new_rank": new_rank, "total_spend": float(total)}
