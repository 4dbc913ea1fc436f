"""Typed errors raised by the agent."""

from __future__ import annotations


class PreviewAgentError(RuntimeError):
    """Base class for typed operational errors."""

    error_code = "INTERNAL_ERROR"
    failure_class = "internal"

    def metadata(self) -> dict[str, str]:
        return {
            "error_code": self.error_code,
            "failure_class": self.failure_class,
            "detail": str(self),
        }


class ConfigError(PreviewAgentError):
    """Configuration is missing or invalid. Fatal at startup."""

    error_code = "CONFIG_ERROR"
    failure_class = "configuration"

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class RegistryError(PreviewAgentError):
    """Project state registry could not be opened, read or written."""

    error_code = "REGISTRY_ERROR"
    failure_class = "storage"


class ExternalToolError(PreviewAgentError):
    """The external project tool exited non-zero or timed out."""

    error_code = "EXTERNAL_TOOL_ERROR"
    failure_class = "external_tool"

    def __init__(
        self,
        command: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            message = f"{command} timed out"
        else:
            message = f"{command} exited with {returncode}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
