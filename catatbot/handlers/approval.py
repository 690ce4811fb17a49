"""
Approver commands: /pending, /approve <id>, /reject <id> [reason],
/detail <id> and /stats.
"""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from catatbot.handlers.common import is_approver
from catatbot.services.transitions import ApprovalTransitionManager, TransitionOutcome
from catatbot.utils.formatters import (
    format_already_processed,
    format_approval_stats,
    format_approval_usage,
    format_decision_done,
    format_error,
    format_not_approver,
    format_pending_list,
    format_transaction_detail,
    format_transaction_not_found,
)
from catatbot.utils.parsers import parse_transaction_id

logger = logging.getLogger(__name__)

PENDING_LIST_LIMIT = 20


async def handle_pending_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """List transactions waiting for a decision."""
    if not is_approver(update):
        logger.warning("Non-approver /pending from user_id=%d", update.effective_user.id)
        await update.message.reply_text(format_not_approver())
        return

    transitions: ApprovalTransitionManager = context.bot_data["transitions"]
    try:
        pending = await transitions.list_pending(PENDING_LIST_LIMIT)
    except Exception:
        logger.exception("Failed to list pending transactions")
        await update.message.reply_text(format_error())
        return
    await update.message.reply_text(format_pending_list(pending), parse_mode="Markdown")


async def handle_approve_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _decide(update, context, "approve")


async def handle_reject_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _decide(update, context, "reject")


async def _decide(update: Update, context: ContextTypes.DEFAULT_TYPE, command: str) -> None:
    approver_id = update.effective_user.id
    if not is_approver(update):
        logger.warning("Non-approver /%s from user_id=%d", command, approver_id)
        await update.message.reply_text(format_not_approver())
        return

    args = context.args or []
    transaction_id = parse_transaction_id(args)
    if transaction_id is None:
        await update.message.reply_text(format_approval_usage(command))
        return

    transitions: ApprovalTransitionManager = context.bot_data["transitions"]
    try:
        if command == "approve":
            result = await transitions.approve(transaction_id, approver_id)
        else:
            reason = " ".join(args[1:]).strip() or None
            result = await transitions.reject(transaction_id, approver_id, reason)
    except Exception:
        logger.exception("/%s %s failed", command, transaction_id)
        await update.message.reply_text(format_error())
        return

    if result.outcome == TransitionOutcome.NOT_FOUND:
        reply = format_transaction_not_found()
    elif result.outcome == TransitionOutcome.ALREADY_PROCESSED:
        reply = format_already_processed(
            result.transaction.approval_status if result.transaction else None
        )
    else:
        reply = format_decision_done(result.transaction)
    await update.message.reply_text(reply, parse_mode="Markdown")


async def handle_detail_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Show one transaction; pending ones include the decision commands."""
    if not is_approver(update):
        logger.warning("Non-approver /detail from user_id=%d", update.effective_user.id)
        await update.message.reply_text(format_not_approver())
        return

    transaction_id = parse_transaction_id(context.args or [])
    if transaction_id is None:
        await update.message.reply_text(format_approval_usage("detail"))
        return

    transitions: ApprovalTransitionManager = context.bot_data["transitions"]
    try:
        transaction = await transitions.get(transaction_id)
    except Exception:
        logger.exception("/detail %s failed", transaction_id)
        await update.message.reply_text(format_error())
        return

    if transaction is None:
        await update.message.reply_text(format_transaction_not_found())
        return
    await update.message.reply_text(format_transaction_detail(transaction), parse_mode="Markdown")


async def handle_stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not is_approver(update):
        logger.warning("Non-approver /stats from user_id=%d", update.effective_user.id)
        await update.message.reply_text(format_not_approver())
        return

    transitions: ApprovalTransitionManager = context.bot_data["transitions"]
    try:
        stats = await transitions.stats()
    except Exception:
        logger.exception("Failed to load approval stats")
        await update.message.reply_text(format_error())
        return
    await update.message.reply_text(format_approval_stats(stats), parse_mode="Markdown")
