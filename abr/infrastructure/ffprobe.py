import subprocess
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union
from abr.domain.errors import AnalysisError

class FFprobeAdapter:
    """Wrapper around ffprobe returning raw stream/format metadata.

    Interpretation of the output is left to ``pipeline.source``.
    """

    def __init__(self, binary: str = "ffprobe", timeout: Optional[float] = 120.0, logger: Optional[logging.Logger] = None):
        self.binary = binary
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def _build_command(self, source: Union[Path, str]) -> list:
        return [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(source),
        ]

    def probe(self, source: Union[Path, str]) -> Dict[str, Any]:
        """Executes ffprobe and parses its JSON output."""
        cmd = self._build_command(source)
        self.logger.debug(f"FFPROBE_CMD: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise AnalysisError(f"{self.binary} not found on PATH")
        except subprocess.TimeoutExpired:
            raise AnalysisError(f"{self.binary} timed out after {self.timeout}s for {source}")

        if result.returncode != 0:
            raise AnalysisError(f"ffprobe failed for {source}: {(result.stderr or '').strip() or 'exit code ' + str(result.returncode)}")

        try:
            data = json.loads(result.stdout or "")
        except json.JSONDecodeError as e:
            raise AnalysisError(f"Unparsable ffprobe output for {source}: {e}")
        if not isinstance(data, dict):
            raise AnalysisError(f"Unexpected ffprobe output for {source}")
        return data
