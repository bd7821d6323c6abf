from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from marketplace.deps import get_current_user
from marketplace.models.user import User
from marketplace.services import disputes as dispute_service

router = APIRouter()


class MessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=5000)
    is_internal: bool = False


@router.get("/{dispute_id}/messages")
async def dispute_messages(dispute_id: str, user: User = Depends(get_current_user)):
    """Conversation on a dispute; internal notes only for conciliators."""
    items = await dispute_service.list_messages(dispute_id, user)
    return {"items": [dispute_service.message_to_dict(m) for m in items]}


@router.post("/{dispute_id}/messages", status_code=status.HTTP_201_CREATED)
async def dispute_post_message(dispute_id: str, body: MessageRequest, user: User = Depends(get_current_user)):
    m = await dispute_service.add_message(dispute_id, user, body.message, body.is_internal)
    return dispute_service.message_to_dict(m)
