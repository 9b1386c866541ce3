from __future__ import annotations


class InvalidArgument(ValueError):
    pass


class ToolRunError(RuntimeError):
    """Base class for failures a command can show to the user."""


class WorkspaceError(ToolRunError):
    pass


class FetchError(ToolRunError):
    def __init__(self, url: str, reason: str, *, status: int | None = None) -> None:
        super().__init__(f"Failed to download {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class UnsupportedInputType(ToolRunError):
    def __init__(self, content_type: str | None) -> None:
        super().__init__(f'Unsupported file type "{content_type or "unknown"}"')
        self.content_type = content_type


class SpawnError(ToolRunError):
    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Could not start `{command}`: {reason}")
        self.command = command


class ToolTimeout(ToolRunError):
    def __init__(self, timeout_s: float, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(f"Timeout ({timeout_s:g}s)")
        self.timeout_s = timeout_s
        self.stdout = stdout
        self.stderr = stderr


class ToolError(ToolRunError):
    def __init__(self, exit_code: int, *, stdout: str = "", stderr: str = "") -> None:
        detail = stdout.strip() or stderr.strip() or f"exited with code {exit_code}"
        super().__init__(detail)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class HistoryPersistError(ToolRunError):
    pass


class UnresolvedReference(ToolRunError):
    def __init__(self, token: str, offset: int) -> None:
        super().__init__("Failed to retrieve last request")
        self.token = token
        self.offset = offset


class UnknownOutputFormat(ToolRunError):
    def __init__(self, flag: str) -> None:
        super().__init__(f'Invalid format "{flag}"')
        self.flag = flag
