"""Playback policy passed explicitly into every engine call."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from src.config.settings import Settings

from .models import Lesson


@dataclass(frozen=True)
class PlaybackPolicy:
    """Deployment-wide playback rules.

    Attributes:
        max_default_pauses: Budget for lessons that do not set their own
        auto_skip_on_max_pauses: Force-complete once the budget is exhausted
        auto_skip_delay_seconds: Countdown before a forced finish is honoured
    """

    max_default_pauses: int = 3
    auto_skip_on_max_pauses: bool = True
    auto_skip_delay_seconds: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlaybackPolicy":
        return cls(
            max_default_pauses=settings.playback_max_default_pauses,
            auto_skip_on_max_pauses=settings.playback_auto_skip_on_max_pauses,
            auto_skip_delay_seconds=settings.playback_auto_skip_delay_seconds,
        )

    def pause_budget_for(self, lesson: Lesson) -> int:
        if lesson.max_pauses is None:
            return self.max_default_pauses
        return lesson.max_pauses

    def auto_skip_deadline(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.auto_skip_delay_seconds)
