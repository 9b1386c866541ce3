from __future__ import annotations

import logging
from typing import Callable

from discord.ext import commands

from commands._artifacts import history_key, publish_artifacts
from toolrun.errors import ToolRunError
from toolrun.history import ResultHistoryStore
from toolrun.lilypond import LilyPondRenderer, basic_score, extract_code_block, parse_formats
from toolrun.tokens import tokenize
from utils import BOT_PREFIX, defer_interaction, format_error, safe_reply, tag_error_text

log = logging.getLogger(__name__)

NO_CODE_MESSAGE = "No lilypond code found. Please put lilypond code inside \\`\\`\\`"


class Lily(commands.Cog):
    def __init__(
        self,
        bot: commands.Bot,
        *,
        renderer: LilyPondRenderer,
        history: ResultHistoryStore,
    ) -> None:
        self.bot = bot
        self.renderer = renderer
        self.history = history

    async def _render(
        self,
        ctx: commands.Context,
        text: str,
        wrap: Callable[[str], str] | None = None,
    ) -> None:
        await defer_interaction(ctx)

        parts = extract_code_block(text or "")
        if parts is None:
            await safe_reply(ctx, tag_error_text(NO_CODE_MESSAGE), ephemeral=True, mention_author=False)
            return
        flags_text, code = parts

        try:
            formats = parse_formats(tokenize(flags_text))
            result = await self.renderer.render(wrap(code) if wrap else code, formats)
        except ToolRunError as e:
            await safe_reply(ctx, tag_error_text(format_error(str(e))), mention_author=False)
            return
        except Exception:
            log.exception("LilyPond render failed")
            await safe_reply(
                ctx,
                tag_error_text("Something went wrong while rendering."),
                mention_author=False,
            )
            return

        try:
            warning = "\n".join(f"Warning: {w}" for w in result.warnings)
            if not result.artifacts:
                await safe_reply(
                    ctx,
                    tag_error_text(warning or "LilyPond produced no output."),
                    mention_author=False,
                )
                return
            refs = await publish_artifacts(ctx, result.artifacts, first_content=warning or None)
            await self.history.record_result_set(history_key(ctx), refs)
        finally:
            result.cleanup()

    @commands.hybrid_command(
        name="lily",
        description="Render LilyPond code to images, PDF, MIDI or MP3.",
        help=(
            "Render a LilyPond score from a code block.\n"
            "Formats: `images`, `pdf`, `midi`, `mp3` (default `images`). Images and PDF need a "
            "`\\layout` block; MIDI and MP3 need a `\\midi` block.\n\n"
            f"**Usage**: `{BOT_PREFIX}lily [images|pdf|midi|mp3] ... ```<lilypond code>````"
        ),
        usage="[images|pdf|midi|mp3] ... <code block>",
        extras={
            "category": "Tools",
            "destination": "Engrave LilyPond code into sheet music images, PDF, MIDI or MP3.",
            "plus": "Rendered images are trimmed to the music and can be fed into sproc with `$LAST`.",
            "pro": (
                "Runs LilyPond in safe mode with a time limit; MP3 is synthesised from the MIDI "
                "output with timidity and ffmpeg."
            ),
        },
    )
    async def lily(self, ctx: commands.Context, *, text: str = "") -> None:
        await self._render(ctx, text)

    @commands.hybrid_command(
        name="lilybasic",
        description="Render a single-staff melody written in LilyPond syntax.",
        help=(
            "Wraps your notes in a one-staff score with both `\\layout` and `\\midi` blocks.\n\n"
            f"**Usage**: `{BOT_PREFIX}lilybasic [images|pdf|midi|mp3] ... ```c' d' e'````"
        ),
        usage="[images|pdf|midi|mp3] ... <code block>",
        extras={
            "category": "Tools",
            "destination": "Quickly render a melody without writing a full LilyPond score.",
            "plus": "Any output format works since the wrapper adds layout and MIDI blocks.",
            "pro": "Your notes are placed in `\\score { << \\new Staff { ... } >> }` before rendering.",
        },
    )
    async def lilybasic(self, ctx: commands.Context, *, text: str = "") -> None:
        await self._render(ctx, text, basic_score)


async def setup(bot: commands.Bot) -> None:
    settings = getattr(bot, "settings", None)
    history = getattr(bot, "history_store", None)
    if settings is None or not isinstance(history, ResultHistoryStore):
        raise RuntimeError("lily requires the bot's settings and history store")
    renderer = LilyPondRenderer(
        command=settings.lilypond_command,
        timeout_s=settings.lilypond_timeout_s,
        timidity_command=settings.timidity_command,
        ffmpeg_command=settings.ffmpeg_command,
    )
    await bot.add_cog(Lily(bot, renderer=renderer, history=history))
