"""
io.py – input record validation, JSON loading, and rounded JSON output
"""

from __future__ import annotations

import json
import logging
import math
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import InputFormatError, InputMissingError
from .models import BBox, PlaceFeature, PlaceKind

logger = logging.getLogger("transitdemand.io")

M = TypeVar("M", bound=BaseModel)


# ────────────────────────────────────────────────────────────────────────────
# Raw (Overpass-style) records
# ────────────────────────────────────────────────────────────────────────────
class RawCoord(BaseModel):
    lat: float
    lon: float


class RawBounds(BaseModel):
    minlat: float
    minlon: float
    maxlat: float
    maxlon: float

    def to_bbox(self) -> BBox:
        return BBox(self.minlon, self.minlat, self.maxlon, self.maxlat)


class RawElement(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    type: str = "way"
    tags: Dict[str, str] = Field(default_factory=dict)
    geometry: List[RawCoord] = Field(default_factory=list)
    bounds: Optional[RawBounds] = None

    @property
    def ring(self) -> List[Tuple[float, float]]:
        return [(c.lon, c.lat) for c in self.geometry]


class RawBuilding(RawElement):
    """One building footprint as exported by Overpass (`out geom;`)."""


class RawPlace(RawElement):
    """A place / terminal / aerodrome element; nodes carry lat/lon."""

    type: str = "node"
    lat: Optional[float] = None
    lon: Optional[float] = None


def place_from_raw(raw: RawPlace) -> Optional[PlaceFeature]:
    """Return a PlaceFeature, or None when no center can be derived."""
    try:
        kind = PlaceKind.parse(raw.type)
    except ValueError:
        logger.debug("Place %s skipped – unknown element type %r", raw.id, raw.type)
        return None

    ring = raw.ring if len(raw.geometry) >= 3 else None
    bounds = raw.bounds.to_bbox() if raw.bounds else None

    if kind is PlaceKind.POINT and raw.lat is not None and raw.lon is not None:
        center = (raw.lon, raw.lat)
    elif bounds is not None:
        center = bounds.center
    elif ring is not None:
        center = BBox.of_ring(ring).center
    elif raw.lat is not None and raw.lon is not None:
        center = (raw.lon, raw.lat)
    else:
        logger.debug("Place %s skipped – no usable center", raw.id)
        return None

    return PlaceFeature(
        id=raw.id,
        kind=kind,
        tags=dict(raw.tags),
        center=center,
        bounds=bounds,
        ring=ring if kind is not PlaceKind.POINT else None,
    )


# ────────────────────────────────────────────────────────────────────────────
# Loading
# ────────────────────────────────────────────────────────────────────────────
def read_json(path: Path | str) -> Any:
    path = Path(path)
    if not path.is_file():
        raise InputMissingError(path)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except json.JSONDecodeError as exc:
        raise InputFormatError(f"{path}: not valid JSON ({exc})") from exc


def load_records(path: Path | str, model: Type[M]) -> List[M]:
    """
    Parse a JSON list (or an Overpass object with `elements`) into `model`
    instances.  Invalid records are skipped with one aggregate warning.
    """
    data = read_json(path)
    if isinstance(data, dict) and isinstance(data.get("elements"), list):
        data = data["elements"]
    if not isinstance(data, list):
        raise InputFormatError(f"{path}: expected a list of elements")

    records: List[M] = []
    skipped = 0
    for raw in data:
        try:
            records.append(model.model_validate(raw))
        except ValidationError as err:
            skipped += 1
            logger.debug("Skipping invalid %s: %s", model.__name__, err)

    if skipped:
        logger.warning("Skipped %d invalid %s record(s) in %s",
                       skipped, model.__name__, Path(path).name)
    logger.info("Loaded %d %s record(s) from %s", len(records), model.__name__, path)
    return records


def load_region_inputs(
    buildings_path: Path | str, places_path: Path | str
) -> Tuple[List[RawBuilding], List[RawPlace]]:
    """Read both region inputs concurrently; returns once both have loaded."""
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="load") as pool:
        buildings = pool.submit(load_records, buildings_path, RawBuilding)
        places = pool.submit(load_records, places_path, RawPlace)
        return buildings.result(), places.result()


# ────────────────────────────────────────────────────────────────────────────
# Output
# ────────────────────────────────────────────────────────────────────────────
def round_floats(value: Any, decimals: Optional[int]) -> Any:
    """Round every non-integral float leaf to `decimals` places."""
    if decimals is None:
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or value.is_integer():
            return value
        return round(value, decimals)
    if isinstance(value, dict):
        return {k: round_floats(v, decimals) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [round_floats(v, decimals) for v in value]
    return value


def write_json(path: Path | str, data: Any, decimals: Optional[int] = None) -> Path:
    path = Path(path)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(json.dumps(round_floats(data, decimals), separators=(",", ":")))
    logger.debug("JSON written to %s", path)
    return path


def publish_region_output(
    target_dir: Path | str, write: Callable[[Path], None]
) -> Path:
    """
    Write a region's artefacts into a scratch directory, then swap it in
    place of any stale `target_dir`.  Nothing lands in `target_dir` unless
    `write` returns normally.
    """
    target_dir = Path(target_dir)
    scratch = target_dir.with_name(f".{target_dir.name}.partial")
    if scratch.exists():
        shutil.rmtree(scratch)
    scratch.mkdir(parents=True)
    try:
        write(scratch)
    except BaseException:
        shutil.rmtree(scratch, ignore_errors=True)
        raise

    if target_dir.exists():
        shutil.rmtree(target_dir)
    scratch.rename(target_dir)
    logger.info("Output published to %s", target_dir)
    return target_dir
