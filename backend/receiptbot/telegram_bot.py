"""Telegram front end for the receipt pipeline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, ReactionTypeEmoji, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from . import crud
from .config import Settings, get_settings
from .confirmation import ConfirmationService
from .correction import CorrectionEngine
from .db import SessionLocal, init_db
from .dispatcher import Dispatcher, PhotoSource
from .domain.actions import CorrectSummary, parse_action
from .domain.categories import FuzzyCategoryMatcher
from .domain.entities import Payload
from .exceptions import ActionRejected, InvalidAction
from .expenses import LedgerExpenseSink
from .models import PayloadKind
from .notifier import Button, ChatTarget, Notifier, Prompt, Reaction
from .recognition.chain import build_recognition_chain
from .recognition.fetcher import extract_urls
from .recognition.llm import ChatModel

logger = logging.getLogger(__name__)

settings = get_settings()

if not settings.telegram_bot_token:
    logger.warning(
        "Telegram bot token is not configured. Bot cannot start without TELEGRAM_BOT.")

SERVICES_KEY = "services"


def _keyboard(buttons: list[list[Button]]) -> InlineKeyboardMarkup | None:
    if not buttons:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(button.label, callback_data=button.action.encode()) for button in row]
            for row in buttons
        ]
    )


class TelegramNotifier(Notifier):
    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send(self, target: ChatTarget, prompt: Prompt) -> int | None:
        try:
            message = await self.bot.send_message(
                chat_id=target.chat_id,
                text=prompt.text,
                parse_mode=ParseMode.HTML,
                reply_markup=_keyboard(prompt.buttons),
                message_thread_id=target.thread_id,
            )
        except TelegramError as exc:
            logger.warning("Failed to send message to chat %s: %s", target.chat_id, exc)
            return None
        return message.message_id

    async def replace(self, target: ChatTarget, message_id: int | None, prompt: Prompt) -> int | None:
        if message_id:
            try:
                await self.bot.delete_message(chat_id=target.chat_id, message_id=message_id)
            except TelegramError as exc:
                logger.warning("Failed to delete message %s in chat %s: %s", message_id, target.chat_id, exc)
        return await self.send(target, prompt)

    async def react(self, target: ChatTarget, reaction: Reaction) -> None:
        if not target.message_id:
            return
        try:
            await self.bot.set_message_reaction(
                chat_id=target.chat_id,
                message_id=target.message_id,
                reaction=[ReactionTypeEmoji(reaction.value)],
            )
        except TelegramError as exc:
            logger.warning("Failed to react on message %s: %s", target.message_id, exc)


class TelegramPhotoSource(PhotoSource):
    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def download(self, file_id: str) -> bytes:
        file = await self.bot.get_file(file_id)
        return bytes(await file.download_as_bytearray())


@dataclass(slots=True)
class BotServices:
    confirmation: ConfirmationService
    dispatcher: Dispatcher


def build_services(bot: Bot, config: Settings = settings) -> BotServices:
    chat_model = ChatModel(config.openai_api_key)
    matcher = FuzzyCategoryMatcher()
    notifier = TelegramNotifier(bot)
    correction = CorrectionEngine(
        SessionLocal,
        chat_model,
        models=[config.ai_model, config.ai_fallback_model],
        tolerance=config.correction_tolerance,
    )
    confirmation = ConfirmationService(
        SessionLocal,
        notifier,
        LedgerExpenseSink(SessionLocal),
        correction,
        config,
        matcher,
    )
    dispatcher = Dispatcher(
        SessionLocal,
        build_recognition_chain(config, chat_model, matcher),
        notifier,
        confirmation,
        TelegramPhotoSource(bot),
        config,
    )
    return BotServices(confirmation=confirmation, dispatcher=dispatcher)


def _services(context: ContextTypes.DEFAULT_TYPE) -> BotServices:
    return context.application.bot_data[SERVICES_KEY]


def _ensure_group(chat_id: int, title: str | None) -> int:
    with SessionLocal() as db:
        return crud.get_or_create_group(db, chat_id, title).id


def _enqueue(group_id: int, update: Update, payload: Payload) -> int:
    message = update.effective_message
    with SessionLocal() as db:
        job = crud.enqueue_job(
            db,
            group_id=group_id,
            submitter_id=update.effective_user.id if update.effective_user else 0,
            source_message_id=message.message_id,
            payload=payload,
            thread_id=message.message_thread_id if message.is_topic_message else None,
        )
        return job.id


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat = update.effective_chat
    await asyncio.to_thread(_ensure_group, chat.id, chat.title)
    await update.message.reply_text(
        "🧾 <b>Receipt assistant is ready.</b>\n"
        "Send a photo of a receipt or a link to an online receipt and I will split it "
        "into items for you to confirm.",
        parse_mode=ParseMode.HTML,
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "📌 Tips:\n"
        "• Drop a receipt photo, ideally with the QR code visible\n"
        "• Or paste the receipt link from your e-mail or fiscal portal\n"
        f"• Receipts with up to {settings.itemwise_threshold} items are confirmed one by one\n"
        "• Bigger receipts get a summary you can accept or correct in plain words",
        parse_mode=ParseMode.HTML,
    )


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if not message or not message.photo:
        return
    chat = update.effective_chat
    group_id = await asyncio.to_thread(_ensure_group, chat.id, chat.title)
    photo = message.photo[-1]
    job_id = await asyncio.to_thread(_enqueue, group_id, update, Payload(PayloadKind.PHOTO, photo.file_id))
    logger.info("Queued photo job %s for chat %s", job_id, chat.id)
    await message.reply_text("📥 Receipt queued.")


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    text = (message.text or "") if message else ""
    if not text.strip():
        return
    chat = update.effective_chat
    group_id = await asyncio.to_thread(_ensure_group, chat.id, chat.title)

    if await _services(context).confirmation.handle_text(group_id, text):
        return

    urls = extract_urls(text)
    if not urls:
        logger.debug("Ignoring text message in chat %s", chat.id)
        return
    for url in urls:
        job_id = await asyncio.to_thread(_enqueue, group_id, update, Payload(PayloadKind.LINK, url))
        logger.info("Queued link job %s for chat %s", job_id, chat.id)
    await message.reply_text("📥 Receipt link queued.")


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    try:
        action = parse_action(query.data)
    except InvalidAction as exc:
        logger.warning("Rejected callback data %r: %s", query.data, exc)
        await query.answer("This button is no longer valid.")
        return

    try:
        await _services(context).confirmation.handle_action(action)
    except ActionRejected as exc:
        logger.info("Action %s rejected: %s", action.encode(), exc)
        await query.answer(str(exc))
        return
    await query.answer()

    if isinstance(action, CorrectSummary):
        return
    try:
        await query.edit_message_reply_markup(reply_markup=None)
    except TelegramError as exc:
        logger.debug("Could not clear keyboard: %s", exc)


async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Update %s failed", update, exc_info=context.error)


async def _dispatch_tick(context: ContextTypes.DEFAULT_TYPE) -> None:
    await _services(context).dispatcher.tick()


def build_application() -> Application:
    if not settings.telegram_bot_token:
        raise RuntimeError("TELEGRAM_BOT is missing from configuration.")

    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    application.bot_data[SERVICES_KEY] = build_services(application.bot)

    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CallbackQueryHandler(handle_callback))
    application.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    application.add_handler(MessageHandler(
        filters.TEXT & ~filters.COMMAND, handle_text))
    application.add_error_handler(_on_error)

    application.job_queue.run_repeating(
        _dispatch_tick,
        interval=settings.dispatcher_interval_seconds,
        first=settings.dispatcher_interval_seconds,
        name="receipt-dispatcher",
    )
    return application


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.telegram_bot_token:
        raise SystemExit(
            "Please set TELEGRAM_BOT in the environment to run the bot.")
    init_db()
    application = build_application()
    logger.info("Starting Telegram bot...")
    application.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
