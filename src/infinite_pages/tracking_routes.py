"""
Request tracking routes - the frontend reports each action and the API call it made
"""
import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import get_optional_user
from .db.engine import get_db
from .db.models.user import User
from .services.request_tracking_service import RequestTrackingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/request-tracking", tags=["request-tracking"])


class UpdateRequest(BaseModel):
    requestId: str = Field(..., min_length=1)
    updates: Dict[str, Any] = Field(default_factory=dict)


@router.post("/log", status_code=status.HTTP_201_CREATED)
async def log_request(
    payload: Dict[str, Any],
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Record one frontend request (required fields are checked by the service)"""
    entry = RequestTrackingService(db).log_request(
        payload, user_id=current_user.id if current_user else None
    )
    return {"success": True, "id": entry.id, "request_id": entry.request_id}


@router.post("/update")
async def update_request(
    request: UpdateRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    entry = RequestTrackingService(db).update_request(request.requestId, request.updates)
    return {"success": True, "request_id": entry.request_id}
