"""
routers/activity.py — Organization Activity Feed

Called by: main.py (router mount)
Depends on: services/activity_service.py, serializers
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import AuthContext, require_reader
from ..serializers import activity_to_dict
from ..services.activity_service import recent_activity

router = APIRouter(tags=["activity"])


@router.get("/api/activity")
async def list_activity(
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    return {"data": [activity_to_dict(a) for a in recent_activity(db, ctx, limit)]}
