"""Discord bot entry point."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv

from toolrun.config import Settings
from toolrun.fetch import HttpByteSource
from toolrun.history import ResultHistoryStore
from toolrun.kvstore import KeyValueStore
from utils import BOT_PREFIX, safe_reply

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

log = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent

COMMANDS_PATH = BASE_DIR / "commands"


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    # write logs both to console and to a persistent file for later review
    file_handler = logging.FileHandler("bot.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)


class Bot(commands.Bot):
    """Bot implementation with async extension loading.

    Owns the pieces shared by the tool commands: the key-value store backing
    result history, the history itself and the HTTP byte source used to
    download inputs. Extensions pick them up from the bot in ``setup``.
    """

    def __init__(self, prefix: str, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(
            command_prefix=commands.when_mentioned_or(prefix),
            intents=intents,
            help_command=None,
        )
        self.settings = settings
        self.kv_store = KeyValueStore(settings.kv_path)
        self.history_store = ResultHistoryStore(
            self.kv_store, capacity=settings.history_capacity
        )
        self.byte_source = HttpByteSource(
            timeout_s=settings.fetch_timeout_s, max_bytes=settings.fetch_max_bytes
        )
        self.tree.on_error = self.on_app_command_error

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if not self.user:
            return

        content = (message.content or "").strip()

        mention_prefix = re.compile(rf"^\s*<@!?{self.user.id}>\s+")
        if mention_prefix.match(content):
            ctx = await self.get_context(message)
            if getattr(ctx, "command", None) is not None:
                await self.invoke(ctx)
            return

        await self.process_commands(message)

    async def on_ready(self) -> None:
        """Log when the bot has successfully logged in."""
        if self.user:
            log.info("Logged in as %s (ID %s)", self.user, self.user.id)
        else:
            log.info("Logged in")

    async def setup_hook(self) -> None:  # type: ignore[override]
        await self.kv_store.initialize()
        successes, failures = await self.load_all_extensions()
        log.info("Extensions loaded: %d success, %d failed", len(successes), len(failures))
        if failures:
            log.info("Failed extensions: %s", ", ".join(failures))
        synced = await self.tree.sync()
        names = ", ".join(cmd.name for cmd in synced)
        log.info("Synced %d application command(s): %s", len(synced), names)

    async def load_all_extensions(self) -> tuple[list[str], list[str]]:
        """Load every extension under the commands directory."""

        successes: list[str] = []
        failures: list[str] = []

        extensions: list[str] = []
        if COMMANDS_PATH.exists():
            for file in sorted(COMMANDS_PATH.glob("*.py")):
                if file.name.startswith("_"):
                    continue
                extensions.append(f"{COMMANDS_PATH.name}.{file.stem}")

        for ext in extensions:
            try:
                await self.load_extension(ext)
                log.info("Loaded extension %s", ext)
                successes.append(ext)
            except Exception:
                log.exception("Failed to load extension %s", ext)
                failures.append(ext)

        log.info("Discovered %d extensions", len(extensions))
        return successes, failures

    async def close(self) -> None:
        # pending history writes must land before the process exits
        try:
            await self.history_store.drain()
        finally:
            await self.byte_source.close()
            await super().close()

    async def on_command_error(  # type: ignore[override]
        self, ctx: commands.Context, error: commands.CommandError
    ) -> None:
        """Send a friendly notice when a prefix command is missing."""

        if isinstance(error, commands.CommandNotFound):
            prefix = getattr(ctx, "prefix", None) or BOT_PREFIX
            names = ", ".join(f"`{prefix}{cmd.name}`" for cmd in sorted(self.commands, key=lambda c: c.name))
            await safe_reply(
                ctx,
                f"Command not found. Available commands: {names or 'none'}",
                mention_author=False,
            )
            return

        await super().on_command_error(ctx, error)

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        """Handle application command errors gracefully."""

        if isinstance(error, app_commands.TransformerError):
            message = "I couldn't understand one of the options you entered."
        else:
            log.exception("Application command failed", exc_info=error)
            message = "Something went wrong while running that command. Please try again."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


def main() -> None:
    """Bot startup sequence."""

    load_dotenv()
    configure_logging()
    token = os.getenv("DISCORD_BOT_TOKEN")
    prefix = os.getenv("BOT_PREFIX", "c!")
    if not token or token.startswith("YOUR_"):
        raise SystemExit("ERROR: valid DISCORD_BOT_TOKEN not set")

    bot = Bot(prefix, Settings.from_env())
    bot.run(token)


if __name__ == "__main__":
    main()
