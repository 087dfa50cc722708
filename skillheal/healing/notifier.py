"""Escalation notifiers: tell a human that a work item needs attention."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from telegram import Bot

from skillheal.config import TG_BOT_KEY, TG_ESCALATION_CHAT_ID
from skillheal.healing.models import Diagnosis, ErrorContext

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


class Notifier(Protocol):
    async def notify_escalation(self, context: ErrorContext, diagnosis: Diagnosis, reason: str) -> None:
        ...


def format_escalation(context: ErrorContext, diagnosis: Diagnosis, reason: str) -> str:
    lines = [
        f"Escalation: {context.item_id} (schedule {context.schedule_id}, attempt {context.attempt_number})",
        f"Reason: {reason}",
        f"Error: {context.error_message[:500]}",
        f"Root cause: {diagnosis.root_cause}",
        f"Strategy: {diagnosis.fix_strategy.value} (confidence {diagnosis.confidence:.2f})",
    ]
    if diagnosis.suggested_fix:
        lines.append(f"Suggested fix: {diagnosis.suggested_fix}")
    return "\n".join(lines)


class LoggingNotifier:
    """Writes escalations to the log. Used when no channel is configured."""

    async def notify_escalation(self, context: ErrorContext, diagnosis: Diagnosis, reason: str) -> None:
        logger.warning("%s", format_escalation(context, diagnosis, reason))


class TelegramNotifier:
    """Sends escalations to a Telegram chat.

    Example:
        notifier = TelegramNotifier(token, chat_id)
        await notifier.notify_escalation(context, diagnosis, "needs manual fix")

    """

    def __init__(self, token: str, chat_id: int | str, bot: Any = None):
        self.chat_id = chat_id
        self._bot = bot or Bot(token)

    async def notify_escalation(self, context: ErrorContext, diagnosis: Diagnosis, reason: str) -> None:
        text = format_escalation(context, diagnosis, reason)[:MAX_MESSAGE_LENGTH]
        async with self._bot:
            await self._bot.send_message(chat_id=self.chat_id, text=text)
        logger.info("Escalation for %s sent to chat %s", context.item_id, self.chat_id)


def default_notifier() -> Notifier:
    """TelegramNotifier when TG_BOT_KEY and TG_ESCALATION_CHAT_ID are set, else LoggingNotifier."""
    if TG_BOT_KEY and TG_ESCALATION_CHAT_ID:
        return TelegramNotifier(TG_BOT_KEY, TG_ESCALATION_CHAT_ID)
    return LoggingNotifier()
