from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Mapping, Sequence

from toolrun.errors import InvalidArgument, ToolError, ToolTimeout, UnsupportedInputType
from toolrun.fetch import ByteSource
from toolrun.models import ExecutionRequest, ExecutionResult, FetchedInput, InputSource
from toolrun.process import TimedOut, TimedProcessRunner
from toolrun.workspace import ScratchWorkspace

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 60
OUTPUT_DIR_NAME = "output"

# content type -> file extension handed to the tool
IMAGE_CONTENT_TYPES: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/tiff": "tiff",
    "image/bmp": "bmp",
}


class ArtifactPipeline:
    """Stage inputs, run the tool once, and hand its output files to the caller.

    The tool is invoked as ``<command...> <workspace> <arguments...>``. It reads
    the numbered input files from the workspace and writes results into
    ``<workspace>/output``.

    On any failure the workspace is removed before the error propagates. On
    success it is kept alive inside the returned ``ExecutionResult``, and the
    caller must call ``cleanup`` once the artifacts have been consumed.
    """

    def __init__(
        self,
        command: Sequence[str],
        fetcher: ByteSource,
        *,
        allowed_types: Mapping[str, str] = IMAGE_CONTENT_TYPES,
        runner: TimedProcessRunner | None = None,
        default_timeout_s: float = DEFAULT_TIMEOUT_S,
        workspace_root: Path | None = None,
        workspace_prefix: str = "sproc_",
    ) -> None:
        if not command:
            raise InvalidArgument("tool command must not be empty")
        self._command = list(command)
        self._fetcher = fetcher
        self._allowed_types = dict(allowed_types)
        self._runner = runner or TimedProcessRunner()
        self._default_timeout_s = default_timeout_s
        self._workspace_root = workspace_root
        self._workspace_prefix = workspace_prefix

    async def run(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute a prepared request."""
        return await self.execute(request.sources, request.arguments, request.timeout_s)

    async def execute(
        self,
        sources: Sequence[InputSource],
        arguments: Sequence[str],
        timeout_s: float | None = None,
    ) -> ExecutionResult:
        """Fetch and stage ``sources``, run the tool once, and collect its output files.

        The workspace stays on disk for the caller to publish from; hand the
        result to ``cleanup`` afterwards. Any failure releases it here.
        """
        timeout = timeout_s or self._default_timeout_s
        workspace = ScratchWorkspace.acquire(
            prefix=self._workspace_prefix, root=self._workspace_root
        )
        try:
            inputs = await self._resolve_all(sources)
            self._stage(workspace.path, inputs)

            output_dir = workspace.path / OUTPUT_DIR_NAME
            output_dir.mkdir()

            outcome = await self._runner.run(
                self._command[0],
                [*self._command[1:], str(workspace.path), *arguments],
                timeout,
                cwd=workspace.path,
            )
            if isinstance(outcome, TimedOut):
                raise ToolTimeout(timeout, stdout=outcome.stdout, stderr=outcome.stderr)
            if outcome.exit_code != 0:
                raise ToolError(outcome.exit_code, stdout=outcome.stdout, stderr=outcome.stderr)

            artifacts = sorted(
                (p for p in output_dir.iterdir() if p.is_file()), key=lambda p: p.name
            )
        except BaseException:
            workspace.release()
            raise

        log.info("Tool produced %d artifact(s) in %s", len(artifacts), workspace.path)
        return ExecutionResult(
            output=outcome.stdout,
            stderr=outcome.stderr,
            artifacts=artifacts,
            workspace=workspace,
        )

    def cleanup(self, result: ExecutionResult) -> None:
        """Release the workspace behind ``result``."""
        result.cleanup()

    async def _resolve(self, source: InputSource) -> FetchedInput:
        if source.data is not None:
            return FetchedInput(content_type=source.content_type, data=source.data)
        if not source.url:
            raise InvalidArgument("input source needs either a url or data")
        fetched = await self._fetcher.fetch(source.url)
        if source.content_type:
            return FetchedInput(content_type=source.content_type, data=fetched.data)
        return fetched

    async def _resolve_all(self, sources: Sequence[InputSource]) -> list[FetchedInput]:
        tasks = [asyncio.create_task(self._resolve(source)) for source in sources]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _stage(self, folder: Path, inputs: Sequence[FetchedInput]) -> list[Path]:
        extensions: list[str] = []
        for item in inputs:
            ext = self._allowed_types.get((item.content_type or "").lower())
            if ext is None:
                raise UnsupportedInputType(item.content_type)
            extensions.append(ext)

        width = len(str(len(inputs)))
        paths: list[Path] = []
        for index, (item, ext) in enumerate(zip(inputs, extensions)):
            path = folder / f"{index:0{width}d}.{ext}"
            path.write_bytes(item.data)
            paths.append(path)
        return paths
