"""
Transaction entry: free-text router, /catat and /retry.

All state handling lives in WorkflowEngine; these handlers only check
authorization, pass the text in and send back whatever it replies.
"""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from catatbot.handlers.common import is_authorized, reject_unauthorized, reply_all
from catatbot.services.workflow import WorkflowEngine
from catatbot.utils.formatters import format_error

logger = logging.getLogger(__name__)


async def handle_text_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route a text message through the transaction workflow."""
    if update.message is None or not update.message.text:
        return
    if not is_authorized(update):
        await reject_unauthorized(update, context)
        return

    workflow: WorkflowEngine = context.bot_data["workflow"]
    user = update.effective_user
    try:
        replies = await workflow.handle_message(user.id, update.message.text, user.first_name)
    except Exception:
        logger.exception("Workflow failed for user_id=%d", user.id)
        replies = [format_error()]
    await reply_all(update, replies)


async def handle_catat_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Start the entry flow at the transaction type menu."""
    if not is_authorized(update):
        await reject_unauthorized(update, context)
        return

    workflow: WorkflowEngine = context.bot_data["workflow"]
    user_id = update.effective_user.id
    try:
        replies = await workflow.start_transaction(user_id)
    except Exception:
        logger.exception("Could not start transaction for user_id=%d", user_id)
        replies = [format_error()]
    await reply_all(update, replies)


async def handle_retry_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Restore the last failed submission for re-confirmation."""
    if not is_authorized(update):
        await reject_unauthorized(update, context)
        return

    workflow: WorkflowEngine = context.bot_data["workflow"]
    user_id = update.effective_user.id
    try:
        replies = await workflow.retry(user_id)
    except Exception:
        logger.exception("Retry failed for user_id=%d", user_id)
        replies = [format_error()]
    await reply_all(update, replies)
