"""Seed the database with the bundled fables."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from readalong.models import Story, StoryPage

logger = logging.getLogger(__name__)

DEFAULT_STORIES: list[dict] = [
    {
        "slug": "tortoise-and-hare",
        "title": "The Tortoise and the Hare",
        "author": "Aesop",
        "age_min": 3,
        "age_max": 8,
        "moral": "Slow and steady wins the race.",
        "pages": [
            "Once upon a time there was a hare who was always boasting about how fast he could run. "
            "Tired of hearing him boast, the tortoise challenged him to a race. "
            "All the animals in the forest gathered to watch.",
            "The hare ran down the road for a while and then paused to rest. "
            "He looked back at the tortoise and laughed. Poor old tortoise he said. "
            "I am so far ahead that I think I will take a nap.",
            "The hare stretched out along the road and fell asleep thinking he would surely win. "
            "The tortoise walked and walked. He never stopped until he came to the finish line.",
            "The animals who were watching cheered so loudly that they woke up the hare. "
            "The hare stretched and yawned and began to run again but it was too late. "
            "The tortoise had already won the race. Slow and steady wins the race.",
        ],
    },
    {
        "slug": "fox-and-grapes",
        "title": "The Fox and the Grapes",
        "author": "Aesop",
        "age_min": 3,
        "age_max": 9,
        "moral": "It is easy to despise what you cannot get.",
        "pages": [
            "One hot summer day a fox was walking through an orchard. "
            "He stopped before a bunch of grapes that were hanging from a vine high above his head.",
            "Those grapes look so juicy and sweet he said to himself. "
            "What a lovely treat they would be for a thirsty fox like me. "
            "He jumped up trying to reach the grapes but he could not quite get to them.",
            "He stepped back and tried again jumping even higher this time but still could not reach them. "
            "He tried again and again but each time he failed.",
            "Finally the fox turned away from the grapes and said to himself. "
            "Those grapes are probably sour anyway. I am sure they are not worth eating. "
            "It is easy to despise what you cannot get.",
        ],
    },
    {
        "slug": "boy-who-cried-wolf",
        "title": "The Boy Who Cried Wolf",
        "author": "Aesop",
        "age_min": 4,
        "age_max": 10,
        "moral": "Nobody believes a liar even when he is telling the truth.",
        "pages": [
            "There once was a shepherd boy who was bored as he sat on the hillside watching the village sheep. "
            "To amuse himself he took a great breath and sang out. Wolf Wolf The wolf is chasing the sheep.",
            "The villagers came running up the hill to help the boy drive the wolf away. "
            "But when they arrived at the top of the hill they found no wolf. "
            "The boy laughed at the sight of their angry faces.",
            "The boy cried wolf several more times and each time the villagers came running "
            "only to find that there was no wolf. "
            "Then one evening as the sun was going down a real wolf did come.",
            "The boy cried out as loud as he could. Wolf Wolf Please come help me the wolf is attacking the sheep. "
            "But no one came. The villagers thought he was trying to fool them again. "
            "That night the wolf ate many of the sheep. "
            "Nobody believes a liar even when he is telling the truth.",
        ],
    },
]


async def seed_default_stories(db: AsyncSession) -> None:
    """Insert any bundled story that is not in the catalogue yet."""
    added = 0
    for data in DEFAULT_STORIES:
        result = await db.execute(select(Story).where(Story.slug == data["slug"]))
        if result.scalar_one_or_none() is not None:
            continue

        story = Story(
            slug=data["slug"],
            title=data["title"],
            author=data["author"],
            moral=data["moral"],
            age_min=data["age_min"],
            age_max=data["age_max"],
        )
        story.pages = [
            StoryPage(page_index=i, text=text) for i, text in enumerate(data["pages"])
        ]
        db.add(story)
        added += 1

    await db.commit()
    if added:
        logger.info("Seeded %d default stories", added)
