import logging
from typing import Callable, Dict

from telethon import TelegramClient, events

from resources.constants import BOT_TOKEN

logger = logging.getLogger(__name__)

Handler = Callable


class BotManager:
    """
    Connects the Telegram client to the route tables.

    `routes` maps a command ("/deposit") to a handler; `callbacks` maps the
    first word of inline button data ("end_session <id>") to a handler. Every
    handler receives the Telethon event.
    """

    def __init__(self, client: TelegramClient, routes: Dict[str, Handler], callbacks: Dict[str, Handler]):
        self.client = client
        self.routes = routes
        self.callbacks = callbacks

    def register(self):
        """Attach the dispatchers to the client."""
        self.client.add_event_handler(self.command_handler, events.NewMessage(pattern=r"^/"))
        self.client.add_event_handler(self.callback_handler, events.CallbackQuery())

    async def start(self):
        """
        Log in with the bot token and serve updates until disconnected.
        :return: None
        """

        await self.client.start(bot_token=BOT_TOKEN)
        self.register()
        me = await self.client.get_me()
        logger.info("Bot @%s is running with %d commands", me.username, len(self.routes))
        await self.client.run_until_disconnected()

    @staticmethod
    def parse_command(text):
        """'/pcs@cafe_bot Available' -> '/pcs'."""
        return text.split(maxsplit=1)[0].split("@", 1)[0].lower()

    async def command_handler(self, event):
        command = self.parse_command(event.message.text)
        handler = self.routes.get(command)
        if handler is None:
            await event.respond("Unknown command. Type /help for available commands.")
            return
        logger.debug("Dispatching %s from %s", command, event.sender_id)
        await handler(event)

    async def callback_handler(self, event):
        """
        Dispatch an inline button press, then clear the button's loading state.
        :param event: the callback query event
        :return: None
        """

        action = event.data.decode("utf-8").split(maxsplit=1)[0]
        handler = self.callbacks.get(action)
        if handler is None:
            logger.warning("Unknown callback action %r from %s", action, event.sender_id)
            await event.answer("Unknown action.")
            return
        await handler(event)
        await event.answer()
