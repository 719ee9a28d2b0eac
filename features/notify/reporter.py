"""
Progress reporting — one in-place-updated notification per run.

Reporting is best-effort: a sink failure is logged locally and never
reaches the caller.
"""

from __future__ import annotations

import logging
import math

import config
from features.notify.sink import NotificationSink
from models.schemas import SummaryEmbed

log = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def render_progress_bar(percent: float, length: int = config.PROGRESS_BAR_LENGTH) -> str:
    """Render `[====    ] 50%` with `length` cells."""
    percent = min(max(percent, 0.0), 1.0)
    filled = _round_half_up(percent * length)
    return f"[{'=' * filled}{' ' * (length - filled)}] {_round_half_up(percent * 100)}%"


class ProgressReporter:
    """Relay `(percent, label)` updates into a single notification.

    The first report posts a message; every later report edits that same
    message. Each run owns its own reporter, so runs never share a handle.
    """

    def __init__(self, sink: NotificationSink, bar_length: int = config.PROGRESS_BAR_LENGTH):
        self._sink = sink
        self._bar_length = bar_length
        self.message_id: str | None = None
        self.last_percent: float | None = None

    async def report(self, percent: float, label: str) -> None:
        text = f"{label}\n{render_progress_bar(percent, self._bar_length)}"
        try:
            if self.message_id is None:
                self.message_id = await self._sink.send_message(text)
            else:
                await self._sink.edit_message(self.message_id, text)
            self.last_percent = percent
        except Exception as e:
            log.warning("Error sending progress update: %s", e)


async def send_log(sink: NotificationSink, message: str, summary: SummaryEmbed | None = None) -> None:
    """Post a log event to the sink, swallowing (and locally logging) failures."""
    try:
        await sink.send_log(message, summary)
    except Exception as e:
        log.warning("Error sending log to notification channel: %s", e)
