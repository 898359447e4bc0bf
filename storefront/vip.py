# storefront/vip.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db import get_db
from storefront.deps import require_admin
from storefront.models import VipPlan
from storefront.schemas import VipPlanIn, VipPlanUpdateIn, vip_plan_out

router = APIRouter(prefix="/api/vip-plans", tags=["vip"])

SEED_PLANS = [
    {
        "id": "vip-monthly",
        "name": "VIP Monthly",
        "price": 9.99,
        "duration_days": 30,
        "benefits": ["Free shipping", "10% discount on all products", "Early access to new products", "Priority support"],
    },
    {
        "id": "vip-lifetime",
        "name": "Lifetime VIP",
        "price": 50.00,
        "duration_days": 9999,
        "benefits": [
            "Free shipping forever",
            "15% discount on all products",
            "Early access to all new products",
            "Priority support",
            "Exclusive products access",
        ],
    },
]


async def _plan_or_404(db: AsyncSession, plan_id: str) -> VipPlan:
    plan = (await db.execute(select(VipPlan).where(VipPlan.id == plan_id))).scalar_one_or_none()
    if not plan:
        raise HTTPException(status_code=404, detail="VIP plan not found")
    return plan


@router.get("")
async def list_plans(db: AsyncSession = Depends(get_db)):
    q = select(VipPlan).where(VipPlan.is_active.is_(True)).order_by(VipPlan.price.asc())
    return [vip_plan_out(p) for p in (await db.execute(q)).scalars().all()]


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
async def create_plan(payload: VipPlanIn, db: AsyncSession = Depends(get_db)):
    plan = VipPlan(**payload.model_dump())
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return vip_plan_out(plan)


@router.patch("/{plan_id}", dependencies=[Depends(require_admin)])
async def update_plan(plan_id: str, payload: VipPlanUpdateIn, db: AsyncSession = Depends(get_db)):
    plan = await _plan_or_404(db, plan_id)
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(plan, k, v)
    await db.commit()
    await db.refresh(plan)
    return vip_plan_out(plan)


@router.delete("/{plan_id}", dependencies=[Depends(require_admin)])
async def delete_plan(plan_id: str, db: AsyncSession = Depends(get_db)):
    plan = await _plan_or_404(db, plan_id)
    await db.delete(plan)
    await db.commit()
    return {"message": "VIP plan deleted"}
