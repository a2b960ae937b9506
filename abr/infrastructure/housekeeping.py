import os
import uuid
import logging
from pathlib import Path
from typing import Optional
from abr.domain.errors import ResourceError

class HousekeepingService:
    """Output directory checks and cleanup of temporary files."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def prepare_output_dir(self, directory: Path) -> Path:
        """Creates the directory and proves it is writable with a probe file."""
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"Cannot create output directory {directory}: {e}")
        if not directory.is_dir():
            raise ResourceError(f"Output path is not a directory: {directory}")

        probe = directory / f".write_probe_{uuid.uuid4().hex}"
        try:
            probe.write_bytes(b"")
        except OSError as e:
            raise ResourceError(f"Output directory is not writable: {directory} ({e})")
        finally:
            try:
                probe.unlink()
            except OSError:
                pass
        return directory

    def cleanup_temp_files(self, directory: Path) -> int:
        """Removes stale .tmp files left in the directory by an earlier run."""
        removed = 0
        for entry in os.scandir(directory):
            if entry.is_file() and entry.name.endswith(".tmp"):
                try:
                    os.unlink(entry.path)
                    removed += 1
                except OSError as e:
                    self.logger.warning(f"Failed to remove stale temp file {entry.path}: {e}")
        return removed

    def remove_temp_source(self, path: Optional[Path]) -> None:
        """Removes a downloaded source copy."""
        if path is None:
            return
        try:
            path.unlink()
            self.logger.info(f"Temporary source removed: {path.name}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to remove temporary source {path}: {e}")
