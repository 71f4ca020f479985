"""Error hierarchy and exit codes for ffprog."""

from __future__ import annotations

from typing import Any, Optional

EXIT_OK = 0
EXIT_UI_UNAVAILABLE = 1
EXIT_USAGE = 2
EXIT_PROBE = 3
EXIT_PROCESS = 4
EXIT_RECORD = 5
EXIT_CANCELLED = 130


class FfprogError(Exception):
    """Base error for all fatal ffprog failures."""

    exit_code = 1

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProbeError(FfprogError):
    """No usable baseline could be extracted from the input."""

    exit_code = EXIT_PROBE


class DurationMissingError(ProbeError):
    """The probe output carries no duration label at all."""


class UnparseableProbeError(ProbeError):
    """A duration label was found but its value is unusable."""


class ProcessError(FfprogError):
    """The external transcoder could not be started or exited with failure."""

    exit_code = EXIT_PROCESS

    def __init__(
        self,
        message: str,
        *,
        returncode: Optional[int] = None,
        stderr_tail: str = "",
    ) -> None:
        super().__init__(
            message, details={"returncode": returncode, "stderr": stderr_tail}
        )
        self.returncode = returncode
        self.stderr_tail = stderr_tail


class RecordError(FfprogError):
    """Persisting or loading a stats record failed."""

    exit_code = EXIT_RECORD


class RecordIOError(RecordError):
    """The stats record could not be read or written."""


class RecordParseError(RecordError):
    """The stats record is corrupt or structurally invalid."""


class UnsupportedVersionError(RecordError):
    """The stats record was written in a format this build cannot read."""

    def __init__(self, message: str, *, tag: object, version: object) -> None:
        super().__init__(message, details={"format": tag, "version": version})
        self.tag = tag
        self.version = version
