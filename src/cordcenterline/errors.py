"""Exception types raised by cordcenterline."""

from __future__ import annotations

from typing import Optional, Sequence


class CordCenterlineError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(CordCenterlineError, ValueError):
    """Raised when environment paths or the pipeline policy are invalid."""


class LayoutError(CordCenterlineError, ValueError):
    """Raised when a subject identifier cannot be mapped onto the BIDS tree."""


class StagingError(CordCenterlineError):
    """Raised when a required source file cannot be staged."""


class ToolError(CordCenterlineError):
    """Raised when an external toolbox command fails or cannot be started."""

    def __init__(
        self,
        cmd: Sequence[str],
        output: str,
        returncode: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.cmd = list(cmd)
        self.output = output
        self.returncode = returncode
        if message is None and returncode is None:
            message = f"Command not found: {self.cmd[0]}"
        elif message is None:
            message = f"{self.cmd[0]} exited with status {returncode}"
        super().__init__(message)
