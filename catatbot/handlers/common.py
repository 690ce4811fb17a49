"""
Shared handler logic used by every command.

- Authorization (ALLOWED_USER_IDS / APPROVER_USER_IDS)
- /start, /help, /batal
- reply_all(): send a list of workflow replies in order
"""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from catatbot.config import ALLOWED_USER_IDS, APPROVER_USER_IDS
from catatbot.services.workflow import WorkflowEngine
from catatbot.utils.formatters import (
    format_error,
    format_help,
    format_unauthorized,
    format_welcome,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

def is_authorized(update: Update) -> bool:
    """True if the sender is a registered, active user."""
    user = update.effective_user
    return user is not None and user.id in ALLOWED_USER_IDS


def is_approver(update: Update) -> bool:
    user = update.effective_user
    return user is not None and user.id in APPROVER_USER_IDS


async def reject_unauthorized(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Tell an unknown or deactivated user they can't use the bot.

    Any state left over from when the account was active is dropped.
    """
    user = update.effective_user
    if user is None:
        return
    logger.warning("Unauthorized message from user_id=%d", user.id)
    workflow: WorkflowEngine = context.bot_data["workflow"]
    await workflow.discard_user_state(user.id)
    if update.message:
        await update.message.reply_text(format_unauthorized())


async def reply_all(update: Update, replies: list[str]) -> None:
    for text in replies:
        await update.message.reply_text(text, parse_mode="Markdown")


# ---------------------------------------------------------------------------
# Utility commands
# ---------------------------------------------------------------------------

async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command."""
    if not is_authorized(update):
        await reject_unauthorized(update, context)
        return
    await update.message.reply_text(
        format_welcome(update.effective_user.first_name),
        parse_mode="Markdown",
    )


async def handle_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    if not is_authorized(update) and not is_approver(update):
        await reject_unauthorized(update, context)
        return
    await update.message.reply_text(format_help(), parse_mode="Markdown")


async def handle_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /batal command: clear session and any recovery snapshot."""
    if not is_authorized(update):
        await reject_unauthorized(update, context)
        return
    workflow: WorkflowEngine = context.bot_data["workflow"]
    try:
        replies = await workflow.cancel(update.effective_user.id)
    except Exception:
        logger.exception("Cancel failed for user_id=%d", update.effective_user.id)
        replies = [format_error()]
    await reply_all(update, replies)
