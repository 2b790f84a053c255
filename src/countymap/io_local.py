"""Local vector file loading (marine / water-body context polygons)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any


_LOGGER = logging.getLogger("countymap.io_local")


class ResourceNotFoundError(FileNotFoundError):
    """A required local data file is missing."""


class MarineRepository:
    """Thin wrapper around the marine-waters vector file.

    Any format GDAL can read works (shapefile, GeoPackage, GeoJSON); zipped
    shapefiles may be given as ``zip://path/to/file.zip``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self._local_path().exists()

    def load(self, target_crs: Any | None = None) -> Any:
        """Read the marine polygons and reproject them to ``target_crs``."""
        if not self.exists():
            raise ResourceNotFoundError(f"Marine data resource not found: {self.path}")
        gpd = self._require_geopandas()
        frame = gpd.read_file(str(self.path))
        if target_crs is None:
            return frame
        if frame.crs is None:
            _LOGGER.warning("Marine data %s has no CRS; assuming %s", self.path, target_crs)
            return frame.set_crs(target_crs)
        return frame.to_crs(target_crs)

    def _local_path(self) -> Path:
        raw = str(self.path)
        if raw.startswith("zip://"):
            return Path(raw[len("zip://") :].split("!", 1)[0])
        return self.path

    @staticmethod
    def _require_geopandas() -> Any:
        try:
            import geopandas as gpd
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError("geopandas is required for local vector data loading") from exc
        return gpd
