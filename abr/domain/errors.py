"""Error taxonomy for the transcoding pipeline.

Every error carries the pipeline ``phase`` it was raised in and, for
rendition-level failures, the target ``height``, so the top-level caller can
report a diagnosable message without inspecting the log file.
"""

from typing import Iterable, List, Optional


class TranscodeError(Exception):
    """Base class for all pipeline failures."""

    phase = "pipeline"

    def __init__(self, message: str, *, phase: Optional[str] = None, height: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if phase is not None:
            self.phase = phase
        self.height = height

    def __str__(self) -> str:
        where = f"{self.phase}"
        if self.height is not None:
            where = f"{where} {self.height}p"
        return f"[{where}] {self.message}"


class InputError(TranscodeError, ValueError):
    """Missing or invalid input, output path or numeric option."""

    phase = "input"


class ResourceError(TranscodeError):
    """Output directory cannot be created or written."""

    phase = "resource"


class AnalysisError(TranscodeError):
    """Probe tool failure or a source without a usable video stream."""

    phase = "analysis"


class JobError(TranscodeError):
    """One rendition's encoder invocation failed."""

    phase = "encode"

    def __init__(self, message: str, *, height: int, phase: Optional[str] = None):
        super().__init__(message, phase=phase, height=height)


class EncodeRunError(TranscodeError):
    """Aggregate failure of an encode run (one or more JobErrors)."""

    phase = "encode"

    def __init__(self, errors: Iterable[JobError]):
        self.errors: List[JobError] = sorted(errors, key=lambda e: -(e.height or 0))
        heights = ", ".join(f"{e.height}p" for e in self.errors)
        details = "; ".join(f"{e.height}p: {e.message}" for e in self.errors)
        super().__init__(f"{len(self.errors)} rendition(s) failed ({heights}): {details}")

    @property
    def failed_heights(self) -> List[int]:
        return [e.height for e in self.errors if e.height is not None]
