"""Activity log endpoints."""

from typing import Optional, List
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from postscan.db.database import get_db
from postscan.db.models import Activity, ActionType
from postscan.utils.constants import API

router = APIRouter()


class ActivityItem(BaseModel):
    """Single activity item."""
    id: int
    action_type: str
    title: str
    description: Optional[str]
    details: Optional[dict]
    created_at: datetime


class ActivityListResponse(BaseModel):
    """List of activities."""
    activities: List[ActivityItem]
    total: int
    has_more: bool


@router.get("", response_model=ActivityListResponse)
async def get_activity(
    limit: int = Query(API.DEFAULT_ACTIVITY_LIMIT, ge=1, le=API.MAX_ACTIVITY_LIMIT),
    offset: int = Query(0, ge=0),
    action_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """Get the scan activity log, newest first."""
    query = select(Activity)
    count_query = select(func.count(Activity.id))

    if action_type:
        try:
            selected = ActionType(action_type)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown action type: {action_type}")
        query = query.where(Activity.action_type == selected)
        count_query = count_query.where(Activity.action_type == selected)

    total = await db.scalar(count_query) or 0

    query = query.order_by(Activity.created_at.desc(), Activity.id.desc()).offset(offset).limit(limit)
    results = await db.scalars(query)

    activities = [
        ActivityItem(
            id=a.id,
            action_type=a.action_type.value,
            title=a.title,
            description=a.description,
            details=a.details,
            created_at=a.created_at,
        )
        for a in results.all()
    ]

    return ActivityListResponse(
        activities=activities,
        total=total,
        has_more=offset + limit < total,
    )


@router.get("/types")
async def get_action_types():
    """Get all action types."""
    return {
        "types": [
            {"value": t.value, "label": t.value.replace("_", " ").title()}
            for t in ActionType
        ]
    }
