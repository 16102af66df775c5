"""Spoken status announcements.

The session only sees the Announcer port: announce(text) returns at once and
never raises. Synthesis runs as a background task; the resulting audio is
pushed onto a bounded feed that the presentation layer polls and plays.
"""

import asyncio
import base64
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

import config
from errors import SpeechError
from models import Announcement

logger = logging.getLogger(__name__)


class Announcer(Protocol):
    def announce(self, text: str) -> None: ...


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> bytes: ...


class AnnouncementFeed:
    """Most recent announcements, oldest dropped first."""

    def __init__(self, size: int = config.ANNOUNCEMENT_FEED_SIZE):
        self._items: deque[Announcement] = deque(maxlen=size)

    def push(self, announcement: Announcement) -> None:
        self._items.append(announcement)

    def recent(self) -> list[Announcement]:
        return list(self._items)


class SpeechAnnouncer:
    def __init__(
        self,
        synthesizer: Synthesizer,
        feed: AnnouncementFeed | None = None,
        sample_rate: int = config.TTS_SAMPLE_RATE,
    ):
        self.synthesizer = synthesizer
        self.feed = feed or AnnouncementFeed()
        self.sample_rate = sample_rate
        self._tasks: set[asyncio.Task] = set()

    def announce(self, text: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No event loop, announcement skipped: %s", text)
            return
        task = loop.create_task(self._speak(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _speak(self, text: str) -> None:
        now = datetime.now(timezone.utc)
        try:
            audio = await self.synthesizer.synthesize(text)
        except SpeechError as exc:
            logger.error("Speech synthesis failed for %r: %s", text, exc)
            self.feed.push(Announcement(text=text, created_at=now))
            return
        except Exception:
            logger.exception("Unexpected speech failure for %r", text)
            self.feed.push(Announcement(text=text, created_at=now))
            return
        self.feed.push(Announcement(
            text=text,
            created_at=now,
            audio_base64=base64.b64encode(audio).decode("ascii"),
            sample_rate=self.sample_rate,
        ))

    async def aclose(self) -> None:
        """Wait for announcements still being synthesized."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class LogAnnouncer:
    """Announcer that only logs; used when no speech backend is configured."""

    def __init__(self, feed: AnnouncementFeed | None = None):
        self.feed = feed or AnnouncementFeed()

    def announce(self, text: str) -> None:
        logger.info("Announcement: %s", text)
        self.feed.push(Announcement(text=text, created_at=datetime.now(timezone.utc)))
