import os
import logging
from pathlib import Path
from typing import Iterable, Optional
from abr.domain.errors import ResourceError
from abr.domain.models import ManifestFragment, MasterManifest

MASTER_MANIFEST_NAME = "master.m3u8"


def _fragment_order(fragment: ManifestFragment):
    return (-fragment.target_height, -fragment.bandwidth, fragment.label)


def assemble(fragments: Iterable[ManifestFragment]) -> MasterManifest:
    """Builds the master manifest with variants in descending height order.

    The order depends only on the fragments themselves, so jobs finishing in
    any order produce the same manifest.
    """
    return MasterManifest(fragments=tuple(sorted(fragments, key=_fragment_order)))


def write_master_manifest(
    manifest: MasterManifest,
    output_dir: Path,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """Writes master.m3u8 via a temp file and an atomic rename."""
    logger = logger or logging.getLogger(__name__)
    target = output_dir / MASTER_MANIFEST_NAME
    tmp_path = output_dir / f"{MASTER_MANIFEST_NAME}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(manifest.render())
        os.replace(tmp_path, target)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise ResourceError(f"Cannot write {target}: {e}")
    logger.info(f"MANIFEST_WRITTEN: {target} renditions={len(manifest.fragments)}")
    return target
