"""Story catalogue API routes."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from readalong.database import get_db
from readalong.models import Story

logger = logging.getLogger(__name__)

router = APIRouter()


async def load_story(db: AsyncSession, story_id: int) -> Optional[Story]:
    """Fetch a story with its pages eagerly loaded, or None."""
    result = await db.execute(
        select(Story)
        .where(Story.id == story_id)
        .options(selectinload(Story.pages))
    )
    return result.scalar_one_or_none()


def _story_summary(story: Story) -> dict:
    return {
        "id": story.id,
        "slug": story.slug,
        "title": story.title,
        "author": story.author,
        "category": story.category,
        "moral": story.moral,
        "age_min": story.age_min,
        "age_max": story.age_max,
        "page_count": len(story.pages),
    }


@router.get("/stories")
async def list_stories(db: AsyncSession = Depends(get_db)):
    """All stories in the catalogue, oldest first."""
    result = await db.execute(
        select(Story).options(selectinload(Story.pages)).order_by(Story.id)
    )
    stories = result.scalars().all()
    return JSONResponse({"stories": [_story_summary(s) for s in stories]})


@router.get("/stories/{story_id}")
async def get_story(story_id: int, db: AsyncSession = Depends(get_db)):
    """One story with the reference words of every page."""
    story = await load_story(db, story_id)
    if not story:
        return JSONResponse({"error": "Story not found"}, status_code=404)

    body = _story_summary(story)
    body["pages"] = [
        {"page_index": page.page_index, "text": page.text, "words": page.words}
        for page in story.pages
    ]
    return JSONResponse(body)
