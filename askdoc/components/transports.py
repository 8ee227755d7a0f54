"""
Chat transport components for AskDoc.

A transport delivers inbound questions to a handler and sends replies back
to the chat they came from. It owns the event loop of the query service.
"""

from abc import ABC, abstractmethod
import asyncio
import logging
from typing import Awaitable, Callable, List

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, ApplicationBuilder, ContextTypes, MessageHandler, filters

from ..utils.data_models import InboundMessage
from ..utils.errors import TransportError

logger = logging.getLogger(__name__)

MessageHandlerFn = Callable[[InboundMessage], Awaitable[object]]

# Telegram rejects messages longer than this.
TELEGRAM_MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = TELEGRAM_MAX_MESSAGE_LENGTH) -> List[str]:
    """Splits a reply into pieces the transport accepts, preferring line breaks."""
    if len(text) <= limit:
        return [text]
    pieces = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        pieces.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        pieces.append(text)
    return pieces


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict):
    # Stray task failures are logged and never stop the loop.
    exception = context.get("exception")
    logger.error(
        f"Unhandled exception in event loop: {context.get('message')}",
        exc_info=exception,
    )


class BaseTransport(ABC):
    """Abstract base class for all chat transports."""

    @abstractmethod
    async def send_message(self, chat_id: int, text: str):
        """
        Sends a message to a chat.

        Raises:
            TransportError: If the message could not be delivered.
        """
        pass

    @abstractmethod
    def run(self, handler: MessageHandlerFn):
        """Delivers inbound messages to `handler` until a shutdown signal arrives."""
        pass


class TelegramTransport(BaseTransport):
    """
    A transport backed by the Telegram Bot API (long polling).

    Updates are processed concurrently, so one slow question never holds up
    other chats.
    """

    def __init__(self, token: str, drop_pending_updates: bool = False):
        self.token = token
        self.drop_pending_updates = drop_pending_updates
        self.application: Application = None

    async def send_message(self, chat_id: int, text: str):
        if self.application is None:
            raise TransportError("Telegram application is not running.")
        try:
            for piece in split_message(text):
                await self.application.bot.send_message(chat_id=chat_id, text=piece)
        except TelegramError as e:
            raise TransportError(f"Could not deliver message to chat {chat_id}: {e}") from e

    @staticmethod
    async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE):
        logger.error(f"Unhandled error while processing update: {context.error}", exc_info=context.error)

    @staticmethod
    async def _post_init(application: Application):
        asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
        me = await application.bot.get_me()
        logger.info(f"Telegram bot @{me.username} started and listening for messages")

    def build_application(self, handler: MessageHandlerFn) -> Application:
        """Builds the Telegram application wired to `handler`."""

        async def on_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
            message = update.effective_message
            if message is None or message.text is None or update.effective_chat is None:
                return
            user = update.effective_user
            await handler(
                InboundMessage(
                    chat_id=update.effective_chat.id,
                    text=message.text,
                    user_name=(user.first_name if user and user.first_name else "User"),
                )
            )

        application = (
            ApplicationBuilder()
            .token(self.token)
            .concurrent_updates(True)
            .post_init(self._post_init)
            .build()
        )
        application.add_handler(MessageHandler(filters.TEXT, on_message))
        application.add_error_handler(self._on_error)
        self.application = application
        return application

    def run(self, handler: MessageHandlerFn):
        application = self.build_application(handler)
        # run_polling installs SIGINT/SIGTERM handlers and returns after shutdown.
        application.run_polling(
            allowed_updates=Update.ALL_TYPES,
            drop_pending_updates=self.drop_pending_updates,
        )
        logger.info("Telegram polling stopped.")


class ConsoleTransport(BaseTransport):
    """
    A transport that reads questions from stdin and prints replies.

    Every line is one question from chat 0. Handy for local trials.
    """

    def __init__(self, prompt: str = "> ", chat_id: int = 0):
        self.prompt = prompt
        self.chat_id = chat_id

    async def send_message(self, chat_id: int, text: str):
        print(text)

    async def _loop(self, handler: MessageHandlerFn):
        asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
        while True:
            try:
                line = await asyncio.to_thread(input, self.prompt)
            except EOFError:
                break
            await handler(InboundMessage(chat_id=self.chat_id, text=line, user_name="console"))

    def run(self, handler: MessageHandlerFn):
        try:
            asyncio.run(self._loop(handler))
        except KeyboardInterrupt:
            logger.info("Interrupt received. Stopping console transport.")
