import os

from discord.ext import commands

BOT_PREFIX = os.getenv("BOT_PREFIX", "c!")
ERROR_TAG = "\u2063ERR\u2063"
MAX_ERROR_CHARS = 1800


def tag_error_text(text: str) -> str:
    if ERROR_TAG in text:
        return text
    return f"{text}\n{ERROR_TAG}"


def sanitize(text: str) -> str:
    return text.replace("@everyone", "@​everyone").replace("@here", "@​here")


def format_error(message: str, *, max_chars: int = MAX_ERROR_CHARS) -> str:
    """Render an error for chat, cutting it down to ``max_chars``."""
    message = sanitize(str(message).strip()).replace("```", "'''")
    if len(message) > max_chars:
        return f"Error (Truncated): ```\n{message[:max_chars]}\n```"
    return f"Error: ```\n{message}\n```"


async def defer_interaction(ctx: commands.Context) -> None:
    """Show a 'processing' state while a command runs."""
    if ctx.interaction and not ctx.interaction.response.is_done():
        await ctx.interaction.response.defer(thinking=True)
    else:
        await ctx.typing()


async def safe_reply(ctx: commands.Context, *args, **kwargs):
    """Send an ephemeral reply when possible.

    If the context has an interaction, pass through the ``ephemeral`` flag to
    ``ctx.reply``. Otherwise, fall back to ``ctx.reply``/``ctx.send`` without the
    flag to avoid ``TypeError`` in prefix commands.
    """
    ephemeral = kwargs.pop("ephemeral", False)
    if ctx.interaction:
        return await ctx.reply(*args, ephemeral=ephemeral, **kwargs)
    func = getattr(ctx, "reply", None) or ctx.send
    return await func(*args, **kwargs)
