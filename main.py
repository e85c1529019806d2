"""Read-Along Companion – FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from readalong.database import async_session, init_db
from readalong.seed import seed_default_stories

# --- Configure logging so readalong.* loggers are visible alongside uvicorn ---
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:    %(name)s - %(message)s",
    stream=sys.stdout,
    force=True,  # override uvicorn's config
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    await init_db()
    async with async_session() as db:
        await seed_default_stories(db)
    log.info("Story catalogue ready")

    yield


app = FastAPI(title="Read-Along Companion", version="0.1.0", lifespan=lifespan)

# --- Register routers ---
from readalong.routes.reading import router as reading_router  # noqa: E402
from readalong.routes.stories import router as stories_router  # noqa: E402

app.include_router(stories_router, prefix="/api")
app.include_router(reading_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
