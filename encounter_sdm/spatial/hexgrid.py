"""
Equal-area hexagonal grid over the globe.

Spatial subsampling needs cells that cover the same ground area everywhere;
binning on raw latitude/longitude squares would give polar cells a fraction
of the area of equatorial ones and bias the sample toward high latitudes.

The grid is built in two steps:

  1. Project WGS84 longitude/latitude to the global cylindrical equal-area
     projection EPSG:6933 (metres). Area is preserved exactly by this
     projection, so any region's projected area equals its area on the
     ellipsoid.
  2. Tile the projected plane with a regular pointy-top hexagonal lattice
     whose adjacent centres are `spacing_km` apart. Every hexagon has planar
     area sqrt(3)/2 * spacing², hence every cell has that ground area too,
     whatever its latitude.

Cells are addressed by axial lattice coordinates (q, r) packed into a single
non-negative int64:

    cell_id = (r + _OFFSET) * _STRIDE + (q + _OFFSET)

Usage:

    from encounter_sdm.spatial.hexgrid import HexGridIndexer

    grid = HexGridIndexer(spacing_km=5.0)
    ids = grid.cell_ids(df["latitude"], df["longitude"])
    grid.cell_area_km2        # 21.65 for 5 km spacing
"""

from __future__ import annotations

import logging
import math

import numpy as np
from pyproj import Geod, Transformer

from ..errors import ConfigurationError, DataQualityError

logger = logging.getLogger(__name__)

_GEOGRAPHIC_CRS = "EPSG:4326"
_EQUAL_AREA_CRS = "EPSG:6933"  # WGS 84 / NSIDC EASE-Grid 2.0 Global (cylindrical equal-area)

# Half-width of the EPSG:6933 plane in metres (pi * semi-major axis * cos 30°)
_MAX_PROJECTED_EXTENT_M = 17_367_530.45

_OFFSET = 2**30
_STRIDE = 2**31

_SQRT3 = math.sqrt(3.0)


class HexGridIndexer:
    """
    Maps geographic coordinates to equal-area hexagonal cell ids.

    The lattice is laid over the bounded EPSG:6933 plane without wrapping.
    Cells straddling the ±180° meridian, or the top or bottom edge of the
    plane at the poles, are cut off there: the part on the far side of the
    seam is a different cell, so their ground area is less than
    cell_area_km2. Every other cell covers exactly cell_area_km2.

    Args:
        spacing_km: Distance between adjacent cell centres in the equal-area
            plane, in kilometres.

    Raises:
        ConfigurationError: If spacing_km is not a finite positive number, or
            is so small that lattice coordinates would overflow the id space.
    """

    def __init__(self, spacing_km: float = 5.0):
        try:
            spacing = float(spacing_km)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Hex spacing must be a number, got {spacing_km!r}") from e
        if not math.isfinite(spacing) or spacing <= 0:
            raise ConfigurationError(f"Hex spacing must be positive, got {spacing_km!r}")

        self.spacing_km = spacing
        self._spacing_m = spacing * 1000.0
        # circumradius of a hexagon whose neighbours are spacing_m apart
        self._radius_m = self._spacing_m / _SQRT3

        if _MAX_PROJECTED_EXTENT_M / self._spacing_m * 2 >= _OFFSET:
            raise ConfigurationError(
                f"Hex spacing {spacing_km} km is too small for the cell id space"
            )

        self._forward = Transformer.from_crs(_GEOGRAPHIC_CRS, _EQUAL_AREA_CRS, always_xy=True)
        self._inverse = Transformer.from_crs(_EQUAL_AREA_CRS, _GEOGRAPHIC_CRS, always_xy=True)

    def __repr__(self) -> str:
        return f"HexGridIndexer(spacing_km={self.spacing_km})"

    @property
    def cell_area_km2(self) -> float:
        """Ground area of every cell in km²."""
        return _SQRT3 / 2.0 * self.spacing_km**2

    # ------------------------------------------------------------------
    # Coordinates → cell ids
    # ------------------------------------------------------------------

    def cell_id(self, lat: float, lon: float) -> int:
        """Cell id for a single point."""
        return int(self.cell_ids(np.array([lat]), np.array([lon]))[0])

    def cell_ids(self, lat, lon) -> np.ndarray:
        """
        Vectorised cell lookup.

        Args:
            lat: Latitudes in decimal degrees (array-like).
            lon: Longitudes in decimal degrees (array-like, same length).

        Returns:
            int64 array of cell ids.

        Raises:
            DataQualityError: If any coordinate is missing or out of range.
        """
        lat = np.asarray(lat, dtype=float)
        lon = np.asarray(lon, dtype=float)
        if lat.shape != lon.shape:
            raise DataQualityError(
                f"Latitude and longitude arrays differ in shape: {lat.shape} vs {lon.shape}"
            )
        if not (np.isfinite(lat).all() and np.isfinite(lon).all()):
            raise DataQualityError("Coordinates contain missing or non-finite values")
        if (np.abs(lat) > 90).any():
            raise DataQualityError("Latitudes must lie within [-90, 90]")

        # wrap longitudes into [-180, 180) so the same place always gets the same cell
        lon = (lon + 180.0) % 360.0 - 180.0

        x, y = self._forward.transform(lon, lat)
        q, r = self._xy_to_axial(np.asarray(x), np.asarray(y))
        return (r + _OFFSET) * _STRIDE + (q + _OFFSET)

    def _xy_to_axial(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        # fractional axial coordinates of a pointy-top lattice
        qf = (_SQRT3 / 3.0 * x - y / 3.0) / self._radius_m
        rf = (2.0 / 3.0 * y) / self._radius_m
        sf = -qf - rf

        # cube rounding: round all three, then fix the one with the largest error
        q = np.rint(qf)
        r = np.rint(rf)
        s = np.rint(sf)
        dq = np.abs(q - qf)
        dr = np.abs(r - rf)
        ds = np.abs(s - sf)

        fix_q = (dq > dr) & (dq > ds)
        fix_r = ~fix_q & (dr > ds)
        q = np.where(fix_q, -r - s, q)
        r = np.where(fix_r, -q - s, r)
        return q.astype(np.int64), r.astype(np.int64)

    # ------------------------------------------------------------------
    # Cell ids → geometry
    # ------------------------------------------------------------------

    @staticmethod
    def decode(cell_id: int) -> tuple[int, int]:
        """Axial lattice coordinates (q, r) of a cell id."""
        cell_id = int(cell_id)
        r, q = divmod(cell_id, _STRIDE)
        return q - _OFFSET, r - _OFFSET

    def _center_xy(self, cell_id: int) -> tuple[float, float]:
        q, r = self.decode(cell_id)
        x = self._radius_m * (_SQRT3 * q + _SQRT3 / 2.0 * r)
        y = self._radius_m * (1.5 * r)
        return x, y

    def cell_center(self, cell_id: int) -> tuple[float, float]:
        """(lat, lon) of the cell centre."""
        x, y = self._center_xy(cell_id)
        lon, lat = self._inverse.transform(x, y)
        return float(lat), float(lon)

    def _vertices_xy(self, cell_id: int) -> tuple[np.ndarray, np.ndarray]:
        cx, cy = self._center_xy(cell_id)
        angles = np.deg2rad(60.0 * np.arange(6) - 30.0)
        return cx + self._radius_m * np.cos(angles), cy + self._radius_m * np.sin(angles)

    def cell_polygon(self, cell_id: int, densify: int = 1) -> list[tuple[float, float]]:
        """
        Cell boundary as (lat, lon) vertices, counter-clockwise, not closed.

        Args:
            cell_id: Cell to outline.
            densify: Points per hexagon edge. Edges are straight in the
                equal-area plane, so values > 1 trace their curved shape on
                the globe more faithfully.
        """
        xs, ys = self._vertices_xy(cell_id)
        if densify > 1:
            t = np.arange(densify) / densify
            xs_next = np.roll(xs, -1)
            ys_next = np.roll(ys, -1)
            xs = (xs[:, None] + (xs_next - xs)[:, None] * t).ravel()
            ys = (ys[:, None] + (ys_next - ys)[:, None] * t).ravel()
        lons, lats = self._inverse.transform(xs, ys)
        return [(float(la), float(lo)) for la, lo in zip(lats, lons)]

    def polygon_area_km2(self, cell_id: int) -> float:
        """Shoelace area of the cell in the equal-area plane, in km²."""
        xs, ys = self._vertices_xy(cell_id)
        area_m2 = 0.5 * abs(np.dot(xs, np.roll(ys, -1)) - np.dot(ys, np.roll(xs, -1)))
        return float(area_m2) / 1e6

    def geodesic_area_km2(self, cell_id: int, densify: int = 64) -> float:
        """
        Area of the cell measured on the WGS84 ellipsoid, in km².

        Independent check on the projection: should agree with
        cell_area_km2 at every latitude.
        """
        polygon = self.cell_polygon(cell_id, densify=densify)
        lats = [p[0] for p in polygon]
        lons = [p[1] for p in polygon]
        area_m2, _ = Geod(ellps="WGS84").polygon_area_perimeter(lons, lats)
        return abs(area_m2) / 1e6
