"""
Notify feature — progress and log delivery to the notification channel.

Public API:
    from features.notify import ProgressReporter, build_sink, send_log
"""

from features.notify.reporter import ProgressReporter, render_progress_bar, send_log
from features.notify.sink import DiscordWebhookSink, LoggingSink, NotificationSink, build_sink

__all__ = [
    "DiscordWebhookSink",
    "LoggingSink",
    "NotificationSink",
    "ProgressReporter",
    "build_sink",
    "render_progress_bar",
    "send_log",
]
