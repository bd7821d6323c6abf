from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from marketplace.core.pagination import page
from marketplace.core.roles import Action
from marketplace.deps import page_params, require
from marketplace.models.dispute import ResolutionType
from marketplace.models.user import User
from marketplace.services import disputes as dispute_service

router = APIRouter()


class ResolveRequest(BaseModel):
    resolution: str = Field(max_length=5000)
    resolution_type: ResolutionType
    partial_refund_percentage: Decimal | None = Field(default=None, ge=0, le=100)


@router.get("/disputes")
async def conciliator_disputes(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.RESOLVE_DISPUTES)),
):
    """Unassigned disputes plus my own, oldest first, with SLA indicator."""
    limit, offset = paging
    items, total = await dispute_service.list_disputes(conciliator_id=user.id, status=status, limit=limit, offset=offset)
    return page([dispute_service.dispute_to_dict(d) for d in items], total, limit, offset)


@router.post("/disputes/{dispute_id}/assign")
async def conciliator_assign(dispute_id: str, user: User = Depends(require(Action.RESOLVE_DISPUTES))):
    d = await dispute_service.assign_dispute(dispute_id, user)
    return dispute_service.dispute_to_dict(d)


@router.post("/disputes/{dispute_id}/resolve")
async def conciliator_resolve(
    dispute_id: str,
    body: ResolveRequest,
    user: User = Depends(require(Action.RESOLVE_DISPUTES)),
):
    """Final decision; moves any refund from provider to seller."""
    d = await dispute_service.resolve_dispute(
        dispute_id,
        user,
        body.resolution,
        body.resolution_type,
        body.partial_refund_percentage,
    )
    return dispute_service.dispute_to_dict(d)
