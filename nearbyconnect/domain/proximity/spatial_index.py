"""In-process spatial index over a uniform latitude/longitude grid.

Points are bucketed into square cells of ``cell_deg`` degrees. A radius query
visits only the cells overlapping the circle's bounding box and then filters
candidates by great-circle distance, so a query touches roughly
``(2r / cell)^2`` cells regardless of how many points are indexed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple

EARTH_RADIUS_M = 6_371_008.8
_METERS_PER_DEG_LAT = math.pi * EARTH_RADIUS_M / 180.0

Cell = Tuple[int, int]


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
	"""Great-circle distance in meters between two WGS84 coordinates."""
	phi1 = math.radians(lat1)
	phi2 = math.radians(lat2)
	d_phi = phi2 - phi1
	d_lambda = math.radians(lng2 - lng1)
	a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
	c = 2 * math.asin(min(1.0, math.sqrt(a)))
	return EARTH_RADIUS_M * c


def valid_coordinates(lat: float, lng: float) -> bool:
	try:
		lat_f = float(lat)
		lng_f = float(lng)
	except (TypeError, ValueError):
		return False
	if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
		return False
	return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


@dataclass(slots=True)
class IndexedPoint:
	key: str
	lat: float
	lng: float


@dataclass(slots=True)
class RadiusHit:
	key: str
	lat: float
	lng: float
	distance_m: float


class GeoGridIndex:
	"""Mutable point index supporting O(1) upserts and bounded radius scans."""

	def __init__(self, cell_deg: float = 0.01) -> None:
		if cell_deg <= 0:
			raise ValueError("cell_deg must be positive")
		self.cell_deg = float(cell_deg)
		self._rows = int(math.ceil(180.0 / self.cell_deg))
		self._cols = int(math.ceil(360.0 / self.cell_deg))
		self._cells: Dict[Cell, Set[str]] = {}
		self._points: Dict[str, IndexedPoint] = {}

	def __len__(self) -> int:
		return len(self._points)

	def __contains__(self, key: object) -> bool:
		return key in self._points

	def _cell_for(self, lat: float, lng: float) -> Cell:
		row = min(self._rows - 1, int((lat + 90.0) // self.cell_deg))
		col = int((lng + 180.0) // self.cell_deg) % self._cols
		return row, col

	def get(self, key: str) -> Optional[IndexedPoint]:
		return self._points.get(key)

	def upsert(self, key: str, lat: float, lng: float) -> None:
		if not valid_coordinates(lat, lng):
			raise ValueError("invalid coordinates")
		new_cell = self._cell_for(lat, lng)
		existing = self._points.get(key)
		if existing is not None:
			old_cell = self._cell_for(existing.lat, existing.lng)
			if old_cell != new_cell:
				self._discard(old_cell, key)
		self._cells.setdefault(new_cell, set()).add(key)
		self._points[key] = IndexedPoint(key=key, lat=float(lat), lng=float(lng))

	def remove(self, key: str) -> bool:
		existing = self._points.pop(key, None)
		if existing is None:
			return False
		self._discard(self._cell_for(existing.lat, existing.lng), key)
		return True

	def _discard(self, cell: Cell, key: str) -> None:
		bucket = self._cells.get(cell)
		if bucket is None:
			return
		bucket.discard(key)
		if not bucket:
			del self._cells[cell]

	def _candidate_cells(self, lat: float, lng: float, radius_m: float) -> Iterator[Cell]:
		d_lat = radius_m / _METERS_PER_DEG_LAT
		lat_min = max(-90.0, lat - d_lat)
		lat_max = min(90.0, lat + d_lat)
		# One extra row each side absorbs rounding at cell edges
		row_min = max(0, self._cell_for(lat_min, 0.0)[0] - 1)
		row_max = min(self._rows - 1, self._cell_for(lat_max, 0.0)[0] + 1)

		# Widest longitude of a spherical cap: sin(d_lng) = sin(d) / cos(lat); caps holding a pole span every column
		angular = radius_m / EARTH_RADIUS_M
		cos_lat = math.cos(math.radians(lat))
		cols: range | List[int]
		if lat_max >= 90.0 or lat_min <= -90.0 or cos_lat <= 1e-12 or angular >= math.pi / 2:
			cols = range(self._cols)
		else:
			ratio = math.sin(angular) / cos_lat
			if ratio >= 1.0:
				cols = range(self._cols)
			else:
				d_lng = math.degrees(math.asin(ratio))
				span = int(math.ceil(d_lng / self.cell_deg)) + 1
				center_col = self._cell_for(lat, lng)[1]
				if 2 * span + 1 >= self._cols:
					cols = range(self._cols)
				else:
					# Wraps across the antimeridian
					cols = [(center_col + offset) % self._cols for offset in range(-span, span + 1)]

		for row in range(row_min, row_max + 1):
			for col in cols:
				yield row, col

	def query_radius(self, lat: float, lng: float, radius_m: float) -> List[RadiusHit]:
		"""Return every point within ``radius_m`` meters, nearest first."""
		if not valid_coordinates(lat, lng):
			raise ValueError("invalid coordinates")
		if radius_m < 0:
			raise ValueError("radius must be non-negative")
		hits: List[RadiusHit] = []
		for cell in self._candidate_cells(lat, lng, radius_m):
			bucket = self._cells.get(cell)
			if not bucket:
				continue
			for key in bucket:
				point = self._points[key]
				distance = haversine_m(lat, lng, point.lat, point.lng)
				if distance <= radius_m:
					hits.append(RadiusHit(key=key, lat=point.lat, lng=point.lng, distance_m=distance))
		hits.sort(key=lambda hit: (hit.distance_m, hit.key))
		return hits
