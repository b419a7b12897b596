"""
app/routes/rulesets.py
Plan ruleset endpoints.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.challenges import RulesetCreate, create_ruleset, list_rulesets
from database.connection import get_session
from database.models import Ruleset

router = APIRouter(prefix="/rulesets", tags=["rulesets"])


class RulesetRow(BaseModel):
    id: int
    name: str
    plan: str
    profit_target_pct: float
    max_daily_loss_pct: float
    max_drawdown_pct: float
    max_stake_pct: float
    allowed_markets: list[str]
    max_odds: float | None
    consistency_rule: bool
    consistency_pct: float | None


def _ruleset_to_row(r: Ruleset) -> RulesetRow:
    return RulesetRow(
        id=r.id,
        name=r.name,
        plan=r.plan.value,
        profit_target_pct=r.profit_target_pct,
        max_daily_loss_pct=r.max_daily_loss_pct,
        max_drawdown_pct=r.max_drawdown_pct,
        max_stake_pct=r.max_stake_pct,
        allowed_markets=list(r.allowed_markets),
        max_odds=r.max_odds,
        consistency_rule=r.consistency_rule,
        consistency_pct=r.consistency_pct,
    )


@router.post("", response_model=RulesetRow, status_code=201)
async def add_ruleset(
    body: RulesetCreate,
    session: AsyncSession = Depends(get_session),
) -> RulesetRow:
    ruleset = await create_ruleset(body, session)
    return _ruleset_to_row(ruleset)


@router.get("", response_model=list[RulesetRow])
async def get_rulesets(session: AsyncSession = Depends(get_session)) -> list[RulesetRow]:
    return [_ruleset_to_row(r) for r in await list_rulesets(session)]
