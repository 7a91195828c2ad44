"""
User Routes

Profile-level settings for the signed-in user.
"""

from fastapi import APIRouter, Depends, Form
from sqlalchemy.ext.asyncio import AsyncSession

from twokinds.database import get_db
from twokinds.dependencies import get_current_user
from twokinds.models import User
from twokinds.routes.auth import serialize_user
from twokinds.services.users import update_preferences


router = APIRouter(prefix="/user", tags=["user"])


@router.post("/preferences")
async def save_preferences(
    theme: str | None = Form(None),
    email_notifications: bool | None = Form(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update theme and/or notification preferences; omitted fields are kept."""
    user = await update_preferences(db, user, theme=theme, email_notifications=email_notifications)
    return serialize_user(user)
