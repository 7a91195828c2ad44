"""
Saying Routes - Feed, Creation, Deletion and Likes

This module handles all saying-related endpoints:
- GET  /sayings: Newest sayings with like counts
- GET  /sayings/{id}: One saying with its full sentence
- POST /sayings: Create a saying (form post)
- POST /sayings/{id}/delete: Delete one of your own sayings
- POST /likes: Like / unlike / toggle a saying
- GET  /intros, /types: Choices for the create form

The handlers are thin: they translate form fields into service calls and
let the exception handlers in main.py turn service errors into responses.
"""

import logging

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from twokinds.database import get_db
from twokinds.dependencies import (
    get_current_user, get_optional_user, get_rate_limiter, get_saying_writer,
)
from twokinds.errors import RateLimitError, ValidationError
from twokinds.limiter import limiter
from twokinds.models import Saying, User
from twokinds.services.likes import like_counts, liked_ids, toggle_like
from twokinds.services.ratelimit import RateLimiter
from twokinds.services.sayings import (
    SayingInput, SayingWriter, get_saying, list_feed, list_intros, list_types,
)
from twokinds.utils.text import render_sentence


logger = logging.getLogger(__name__)

router = APIRouter(tags=["sayings"])

LIKE_SAYING = "like_saying"


def format_saying(saying: Saying, likes: int = 0, is_liked: bool = False) -> dict:
    """
    Turn a Saying (with intro, type and user loaded) into a JSON-ready dict.
    """
    intro_text = saying.intro.intro_text if saying.intro else None
    type_name = saying.type.name if saying.type else None
    return {
        "id": saying.id,
        "intro_id": saying.intro_id,
        "intro_text": intro_text,
        "type_id": saying.type_id,
        "type_name": type_name,
        "first_kind": saying.first_kind,
        "second_kind": saying.second_kind,
        "sentence": render_sentence(intro_text, type_name, saying.first_kind, saying.second_kind),
        "author": {"id": saying.user.id, "name": saying.user.name} if saying.user else None,
        "created_at": saying.created_at.isoformat() if saying.created_at else None,
        "likes": likes,
        "is_liked": is_liked,
    }


async def build_feed(db: AsyncSession, user: User | None, limit: int, offset: int,
                     type_id: int | None = None) -> list[dict]:
    sayings = await list_feed(db, limit=limit, offset=offset, type_id=type_id)
    ids = [s.id for s in sayings]
    counts = await like_counts(db, ids)
    mine = await liked_ids(db, user.id, ids) if user else set()
    return [format_saying(s, counts.get(s.id, 0), s.id in mine) for s in sayings]


@router.get("/sayings")
async def feed(
    limit: int = Query(30, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type_id: int | None = None,
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    return {"sayings": await build_feed(db, user, limit, offset, type_id)}


@router.get("/sayings/{saying_id}")
async def saying_detail(
    saying_id: int,
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    saying = await get_saying(db, saying_id)
    counts = await like_counts(db, [saying.id])
    mine = await liked_ids(db, user.id, [saying.id]) if user else set()
    return format_saying(saying, counts.get(saying.id, 0), saying.id in mine)


@router.post("/sayings")
@limiter.limit("30/minute")
async def create_saying(
    request: Request,
    intro: int = Form(...),
    type_choice: str = Form("existing"),
    type: int | None = Form(None),
    new_type: str | None = Form(None),
    first_kind: str = Form(...),
    second_kind: str = Form(...),
    user: User = Depends(get_current_user),
    writer: SayingWriter = Depends(get_saying_writer),
):
    """
    Create a saying from the submit form.

    `type_choice` is "existing" (use `type`) or "new" (create `new_type`).
    """
    if type_choice not in ("existing", "new"):
        raise ValidationError("type_choice", "type_choice must be 'existing' or 'new'")

    data = SayingInput(
        intro_id=intro,
        first_kind=first_kind,
        second_kind=second_kind,
        type_id=type if type_choice == "existing" else None,
        new_type_name=new_type if type_choice == "new" else None,
    )
    saying = await writer.create_saying(user.id, data)
    saying = await get_saying(writer.db, saying.id)
    return JSONResponse(status_code=201, content=format_saying(saying))


@router.post("/sayings/{saying_id}/delete")
@limiter.limit("30/minute")
async def delete_saying(
    request: Request,
    saying_id: int,
    user: User = Depends(get_current_user),
    writer: SayingWriter = Depends(get_saying_writer),
):
    await writer.delete_saying(user.id, saying_id)
    return {"success": True}


@router.post("/likes")
@limiter.limit("120/minute")
async def like_saying(
    request: Request,
    saying_id: int = Form(...),
    action: str | None = Form(None),
    user: User = Depends(get_current_user),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    db: AsyncSession = Depends(get_db),
):
    """
    Like or unlike a saying.

    Without `action` the like is toggled; with "like" / "unlike" the call
    is idempotent. Only calls that change state count against the hourly
    like budget.
    """
    limit = await rate_limiter.check_limit(user.id, LIKE_SAYING)
    if not limit.allowed:
        raise RateLimitError(limit)

    result = await toggle_like(db, user.id, saying_id, action=action or None)
    if result.changed:
        await rate_limiter.record_action(user.id, LIKE_SAYING)

    counts = await like_counts(db, [saying_id])
    return {"saying_id": saying_id, "liked": result.liked, "likes": counts.get(saying_id, 0)}


@router.get("/intros")
async def intros(db: AsyncSession = Depends(get_db)):
    return [{"id": i.id, "intro_text": i.intro_text} for i in await list_intros(db)]


@router.get("/types")
async def types(db: AsyncSession = Depends(get_db)):
    return [{"id": t.id, "name": t.name} for t in await list_types(db)]
