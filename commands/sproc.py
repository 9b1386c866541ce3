from __future__ import annotations

import logging

from discord.ext import commands

from commands._artifacts import attachment_urls, history_key, post_text, publish_artifacts
from toolrun.artifacts import ArtifactPipeline
from toolrun.errors import ToolRunError, UnresolvedReference
from toolrun.fetch import HttpByteSource
from toolrun.history import ResultHistoryStore
from toolrun.models import InputSource
from toolrun.tokens import Invocation, split_invocation, tokenize
from utils import BOT_PREFIX, defer_interaction, format_error, safe_reply, tag_error_text

log = logging.getLogger(__name__)


class Sproc(commands.Cog):
    """Run the image tool on attachments, links or earlier results."""

    def __init__(
        self,
        bot: commands.Bot,
        *,
        pipeline: ArtifactPipeline,
        history: ResultHistoryStore,
    ) -> None:
        self.bot = bot
        self.pipeline = pipeline
        self.history = history

    async def resolve_inputs(
        self, key: str, attachments: list[str], invocation: Invocation
    ) -> list[InputSource]:
        urls = list(attachments)
        for token in invocation.inputs:
            if token.last_offset is None:
                if token.url:
                    urls.append(token.url)
                continue
            refs = await self.history.resolve_last(key, token.last_offset)
            if not refs:
                raise UnresolvedReference(token.raw, token.last_offset)
            urls.extend(refs)
        return [InputSource.from_url(url) for url in urls]

    @commands.hybrid_command(
        name="sproc",
        description="Process images with sproc and get the results back.",
        help=(
            "Run sproc on attached images, links, or your earlier results.\n"
            "Inputs come first, then the sproc options starting at the first `-` token.\n"
            "`$LAST` is your previous result, `$LAST-1` (or `$LAST~1`) the one before it.\n\n"
            f"**Usage**: `{BOT_PREFIX}sproc [links|$LAST-n] ... -<options>`\n"
            f"**Examples**: `{BOT_PREFIX}sproc $LAST -hp 0 tol:1 bg:254`"
        ),
        usage="[links|$LAST-n] ... -<options>",
        extras={
            "category": "Tools",
            "destination": "Run the sproc image tool on attachments, links or previous results.",
            "plus": "Results are remembered per user, so `$LAST` can chain one run into the next.",
            "pro": (
                "Accepts PNG, JPEG, TIFF and BMP inputs. Each run is time-limited and works in a "
                "private scratch directory that is removed once the results are uploaded."
            ),
        },
    )
    async def sproc(self, ctx: commands.Context, *, args: str = "") -> None:
        await defer_interaction(ctx)

        invocation = split_invocation(tokenize(args))
        if not invocation.has_arguments:
            await safe_reply(ctx, tag_error_text("No commands given"), ephemeral=True, mention_author=False)
            return

        key = history_key(ctx)
        try:
            sources = await self.resolve_inputs(key, attachment_urls(ctx), invocation)
        except UnresolvedReference as e:
            await safe_reply(ctx, tag_error_text(str(e)), ephemeral=True, mention_author=False)
            return
        if not sources:
            await safe_reply(
                ctx, tag_error_text("You have nothing to process"), ephemeral=True, mention_author=False
            )
            return

        try:
            result = await self.pipeline.execute(sources, invocation.arguments)
        except ToolRunError as e:
            await safe_reply(ctx, tag_error_text(format_error(str(e))), mention_author=False)
            return
        except Exception:
            log.exception("sproc run failed")
            await safe_reply(
                ctx,
                tag_error_text("Something went wrong while running sproc."),
                mention_author=False,
            )
            return

        try:
            if result.output.strip():
                await post_text(ctx, result.output)
            refs = await publish_artifacts(ctx, result.artifacts)
            await self.history.record_result_set(key, refs)
        finally:
            self.pipeline.cleanup(result)

    @commands.hybrid_command(
        name="sprochistory",
        description="List or clear your remembered sproc results.",
        help=(
            "Show the results `$LAST-n` currently points at, newest first.\n"
            f"**Usage**: `{BOT_PREFIX}sprochistory [clear]`"
        ),
        usage="[clear]",
        extras={
            "category": "Tools",
            "destination": "See which earlier results `$LAST` and `$LAST-n` refer to.",
            "plus": "Pass `clear` to forget your history in this server.",
            "pro": "History is kept per server and user, capped at a fixed number of runs.",
        },
    )
    async def sprochistory(self, ctx: commands.Context, action: str = "") -> None:
        key = history_key(ctx)
        if action.strip().lower() == "clear":
            cleared = await self.history.clear(key)
            message = "History cleared." if cleared else "You have no history to clear."
            await safe_reply(ctx, message, ephemeral=True, mention_author=False)
            return
        if action.strip():
            await safe_reply(
                ctx, tag_error_text(f"Unknown action `{action}`."), ephemeral=True, mention_author=False
            )
            return

        entries = await self.history.snapshot(key)
        if not entries:
            await safe_reply(ctx, "You have no sproc results yet.", ephemeral=True, mention_author=False)
            return

        lines: list[str] = []
        for offset, refs in enumerate(reversed(entries)):
            label = "$LAST" if offset == 0 else f"$LAST-{offset}"
            lines.append(f"`{label}`: " + " ".join(f"<{ref}>" for ref in refs))
        text = "\n".join(lines)
        if len(text) > 1900:
            text = text[:1900] + "…"
        await safe_reply(ctx, text, ephemeral=True, mention_author=False)


async def setup(bot: commands.Bot) -> None:
    settings = getattr(bot, "settings", None)
    history = getattr(bot, "history_store", None)
    byte_source = getattr(bot, "byte_source", None)
    if settings is None or not isinstance(history, ResultHistoryStore) or not isinstance(
        byte_source, HttpByteSource
    ):
        raise RuntimeError("sproc requires the bot's settings, history store and byte source")
    pipeline = ArtifactPipeline(
        settings.sproc_command,
        byte_source,
        default_timeout_s=settings.sproc_timeout_s,
    )
    await bot.add_cog(Sproc(bot, pipeline=pipeline, history=history))
