from typing import List

from abr.config.models import LADDER_HEIGHTS
from abr.domain.errors import InputError
from abr.domain.models import RenditionSpec

LADDER_CATALOG: List[RenditionSpec] = [
    RenditionSpec(target_height=h, label=f"{h}p") for h in LADDER_HEIGHTS
]


def is_catalog_height(height: int) -> bool:
    return height in LADDER_HEIGHTS


def select_ladder(source_height: int, min_quality_height: int) -> List[RenditionSpec]:
    """Renditions to produce for a source, tallest first.

    Never upscales and never returns an empty ladder. When the floor filters
    out everything (floor taller than the source), the single lowest catalog
    height the source can feed is returned. A source shorter than every
    catalog entry gets the lowest entry.
    """
    if source_height <= 0:
        raise InputError(f"Source height must be positive (got {source_height})", phase="ladder")

    no_upscale = [r for r in LADDER_CATALOG if r.target_height <= source_height]
    selected = [r for r in no_upscale if r.target_height >= min_quality_height]
    if selected:
        return sorted(selected, key=lambda r: r.target_height, reverse=True)

    if no_upscale:
        return [min(no_upscale, key=lambda r: r.target_height)]
    return [LADDER_CATALOG[0]]
