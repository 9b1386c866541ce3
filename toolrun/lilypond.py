from __future__ import annotations

import asyncio
import logging
import re
import textwrap
from enum import Enum
from pathlib import Path
from typing import Iterable

from PIL import Image

from toolrun.errors import ToolError, ToolTimeout, UnknownOutputFormat
from toolrun.models import ExecutionResult
from toolrun.process import ProcessOutcome, TimedOut, TimedProcessRunner
from toolrun.workspace import ScratchWorkspace

log = logging.getLogger(__name__)

INPUT_FILE_NAME = "music.ly"
LILYPOND_VERSION = "2.18.2"
PNG_RESOLUTION = 240

# pixels at or above this grey level count as page background when trimming
TRIM_BACKGROUND_LEVEL = 253

CODE_BLOCK_RE = re.compile(r"```(?:[A-Za-z]+\n)?([\s\S]*)```\s*$")
INLINE_CODE_RE = re.compile(r"`([\s\S]*)`\s*$")


class OutputFormat(str, Enum):
    IMAGES = "images"
    PDF = "pdf"
    MIDI = "midi"
    MP3 = "mp3"

    @property
    def extensions(self) -> tuple[str, ...]:
        return _EXTENSIONS[self]

    @property
    def required_block(self) -> str:
        return _REQUIRED_BLOCKS[self]


_EXTENSIONS: dict[OutputFormat, tuple[str, ...]] = {
    OutputFormat.IMAGES: (".png",),
    OutputFormat.PDF: (".pdf",),
    OutputFormat.MIDI: (".mid", ".midi"),
    OutputFormat.MP3: (".mp3",),
}

_REQUIRED_BLOCKS: dict[OutputFormat, str] = {
    OutputFormat.IMAGES: "\\layout",
    OutputFormat.PDF: "\\layout",
    OutputFormat.MIDI: "\\midi",
    OutputFormat.MP3: "\\midi",
}

FORMAT_ALIASES: dict[str, OutputFormat] = {
    "images": OutputFormat.IMAGES,
    "image": OutputFormat.IMAGES,
    "png": OutputFormat.IMAGES,
    "pdf": OutputFormat.PDF,
    "midi": OutputFormat.MIDI,
    "mid": OutputFormat.MIDI,
    "mp3": OutputFormat.MP3,
}


def parse_formats(flags: Iterable[str]) -> set[OutputFormat]:
    formats: set[OutputFormat] = set()
    for flag in flags:
        fmt = FORMAT_ALIASES.get(flag.strip().lower())
        if fmt is None:
            raise UnknownOutputFormat(flag)
        formats.add(fmt)
    return formats or {OutputFormat.IMAGES}


def extract_code_block(text: str) -> tuple[str, str] | None:
    """Split ``text`` into (leading flags text, trailing code block body)."""
    match = CODE_BLOCK_RE.search(text) or INLINE_CODE_RE.search(text)
    if not match:
        return None
    return text[: match.start()], match.group(1)


def basic_score(melody: str) -> str:
    return "\\score { << \\new Staff { " + melody + " } >> \\layout { } \\midi { } }"


def build_source(code: str) -> str:
    header = textwrap.dedent(
        """
        \\version "{version}"
        \\header {
          tagline = ""
          title = ""
          composer = ""
        }
        """
    ).strip()
    return header.replace("{version}", LILYPOND_VERSION) + "\n" + code + "\n"


def trim_png(path: Path, *, background_level: int = TRIM_BACKGROUND_LEVEL) -> bool:
    """Crop the near-white border around a rendered page in place."""
    with Image.open(path) as im:
        im.load()
        source = im.copy()

    rgba = source.convert("RGBA")
    flattened = Image.new("RGB", rgba.size, "white")
    flattened.paste(rgba, mask=rgba.getchannel("A"))
    mask = flattened.convert("L").point(lambda v: 255 if v < background_level else 0)
    bbox = mask.getbbox()
    if bbox is None or bbox == (0, 0, *source.size):
        return False
    source.crop(bbox).save(path, format="PNG", optimize=True)
    return True


def missing_format_warnings(formats: Iterable[OutputFormat], artifacts: Iterable[Path]) -> list[str]:
    suffixes = {p.suffix.lower() for p in artifacts}
    warnings: list[str] = []
    for fmt in sorted(formats, key=lambda f: list(OutputFormat).index(f)):
        if not suffixes.intersection(fmt.extensions):
            warnings.append(
                f"You requested {fmt.value}, but none were found. "
                f"Did you forget a {fmt.required_block} block?"
            )
    return warnings


def _raise_for_outcome(outcome: ProcessOutcome) -> None:
    if isinstance(outcome, TimedOut):
        raise ToolTimeout(outcome.timeout_s, stdout=outcome.stdout, stderr=outcome.stderr)
    if outcome.exit_code != 0:
        raise ToolError(outcome.exit_code, stdout=outcome.stdout, stderr=outcome.stderr)


class LilyPondRenderer:
    def __init__(
        self,
        *,
        command: str = "lilypond",
        timeout_s: float = 60,
        timidity_command: str = "timidity",
        ffmpeg_command: str = "ffmpeg",
        runner: TimedProcessRunner | None = None,
        workspace_root: Path | None = None,
    ) -> None:
        self._command = command
        self._timeout_s = timeout_s
        self._timidity = timidity_command
        self._ffmpeg = ffmpeg_command
        self._runner = runner or TimedProcessRunner()
        self._workspace_root = workspace_root

    def _lilypond_args(self, formats: set[OutputFormat]) -> list[str]:
        args = ["-dsafe", "--loglevel=ERROR"]
        if OutputFormat.IMAGES in formats:
            args += ["-fpng", f"-dresolution={PNG_RESOLUTION}"]
        if OutputFormat.PDF in formats:
            args.append("-fpdf")
        args.append(INPUT_FILE_NAME)
        return args

    async def render(self, code: str, formats: set[OutputFormat]) -> ExecutionResult:
        workspace = ScratchWorkspace.acquire(prefix="lily_", root=self._workspace_root)
        try:
            folder = workspace.path
            (folder / INPUT_FILE_NAME).write_text(build_source(code), encoding="utf-8")

            outcome = await self._runner.run(
                self._command, self._lilypond_args(formats), self._timeout_s, cwd=folder
            )
            _raise_for_outcome(outcome)

            if OutputFormat.IMAGES in formats:
                for png in sorted(folder.glob("*.png")):
                    await asyncio.to_thread(trim_png, png)

            if OutputFormat.MP3 in formats:
                for midi in self._midi_files(folder):
                    await self._midi_to_mp3(folder, midi)

            wanted = {ext for fmt in formats for ext in fmt.extensions}
            artifacts = sorted(
                (p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in wanted),
                key=lambda p: p.name,
            )
        except BaseException:
            workspace.release()
            raise

        return ExecutionResult(
            output="",
            stderr=outcome.stderr,
            artifacts=artifacts,
            workspace=workspace,
            warnings=missing_format_warnings(formats, artifacts),
        )

    @staticmethod
    def _midi_files(folder: Path) -> list[Path]:
        return sorted(p for p in folder.iterdir() if p.suffix.lower() in OutputFormat.MIDI.extensions)

    async def _midi_to_mp3(self, folder: Path, midi: Path) -> Path:
        synth = await self._runner.run(
            self._timidity, [midi.name, "-Ow", "-o", "-"], self._timeout_s, cwd=folder
        )
        _raise_for_outcome(synth)
        wav = synth.stdout_bytes

        def _write_wav(stdin: asyncio.StreamWriter) -> None:
            stdin.write(wav)

        target = folder / f"{midi.stem}.mp3"
        encode = await self._runner.run(
            self._ffmpeg,
            ["-y", "-i", "-", "-acodec", "libmp3lame", "-q:a", "8", "-ab", "128k", target.name],
            self._timeout_s,
            cwd=folder,
            stdin_writer=_write_wav,
        )
        _raise_for_outcome(encode)
        log.debug("Converted %s to %s", midi.name, target.name)
        return target
