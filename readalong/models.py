"""SQLAlchemy ORM models for the story catalogue."""

from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from readalong.database import Base
from readalong.services.word_alignment import split_reference


# ---------------------------------------------------------------------------
# Stories
# ---------------------------------------------------------------------------


class Story(Base):
    __tablename__ = "stories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    author: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="Fable")
    moral: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    age_min: Mapped[int] = mapped_column(Integer, default=3)
    age_max: Mapped[int] = mapped_column(Integer, default=10)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    pages: Mapped[list["StoryPage"]] = relationship(
        back_populates="story",
        cascade="all, delete-orphan",
        order_by="StoryPage.page_index",
    )

    def reference_pages(self) -> list[list[str]]:
        """Reference words for every page, in reading order."""
        return [page.words for page in self.pages]


class StoryPage(Base):
    __tablename__ = "story_pages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    story_id: Mapped[int] = mapped_column(Integer, ForeignKey("stories.id"))
    page_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    story: Mapped["Story"] = relationship(back_populates="pages")

    @property
    def words(self) -> list[str]:
        return split_reference(self.text)
