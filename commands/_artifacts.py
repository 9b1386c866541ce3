"""Shared helpers for commands that post tool artifacts back to Discord."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import discord
from discord.ext import commands

from toolrun.history import ResultHistoryStore
from utils import sanitize

log = logging.getLogger(__name__)

ATTACHMENT_TOO_LARGE = 40005
MAX_MESSAGE_CHARS = 2000


def history_key(ctx: commands.Context) -> str:
    guild_id = ctx.guild.id if ctx.guild else None
    return ResultHistoryStore.make_key(guild_id, ctx.author.id)


def attachment_urls(ctx: commands.Context) -> list[str]:
    urls: list[str] = []
    message = getattr(ctx, "message", None)
    if message is not None and getattr(message, "attachments", None):
        urls.extend(att.url for att in message.attachments)
    interaction = getattr(ctx, "interaction", None)
    if interaction is not None and getattr(interaction, "attachments", None):
        urls.extend(att.url for att in interaction.attachments)
    return urls


async def post_text(ctx: commands.Context, text: str) -> None:
    text = sanitize(text.strip())
    for start in range(0, len(text), MAX_MESSAGE_CHARS):
        try:
            await ctx.send(text[start : start + MAX_MESSAGE_CHARS])
        except discord.HTTPException:
            log.exception("Failed to post tool output")
            return


async def publish_artifacts(
    ctx: commands.Context,
    paths: Iterable[Path],
    *,
    first_content: str | None = None,
) -> list[str]:
    """Upload each artifact as its own message and return the CDN urls.

    Uploads that Discord rejects are reported in the channel and skipped, so
    the returned list only holds artifacts that actually made it.
    """
    refs: list[str] = []
    content = first_content
    for path in paths:
        file = discord.File(path, filename=path.name)
        try:
            sent = await ctx.send(content=content, file=file)
        except discord.HTTPException as e:
            notice = "(Result too large)" if e.code == ATTACHMENT_TOO_LARGE else f"Error: {e.text or e}"
            try:
                await ctx.send(notice)
            except discord.HTTPException:
                log.exception("Failed to report upload error for %s", path.name)
            continue
        finally:
            file.close()
        content = None
        refs.extend(att.url for att in getattr(sent, "attachments", []) or [])
    return refs
