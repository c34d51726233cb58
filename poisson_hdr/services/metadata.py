from __future__ import annotations

import json
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import piexif

from poisson_hdr import config
from poisson_hdr.services.errors import MetadataError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _rational_to_float(x: Any) -> Optional[float]:
	if x is None:
		return None
	if isinstance(x, tuple) and len(x) == 2:
		num, den = x
		if not den:
			return None
		return float(num) / float(den)
	try:
		return float(x)
	except (TypeError, ValueError):
		return None


def _apex_to_time(apex: Optional[float]) -> Optional[float]:
	return 2.0 ** (-apex) if apex is not None else None


def _to_int_safe(v: Any) -> Optional[int]:
	if v is None:
		return None
	if isinstance(v, int):
		return v
	if isinstance(v, (list, tuple)) and v:
		return _to_int_safe(v[0])
	if isinstance(v, bytes):
		s = v.decode("utf-8", errors="ignore").strip()
		return int(s) if s.isdigit() else None
	try:
		return int(v)
	except (TypeError, ValueError):
		return None


def _bytes_to_str(v: Any) -> Optional[str]:
	if v is None:
		return None
	if isinstance(v, bytes):
		return v.decode("utf-8", errors="ignore")
	return str(v)


def load_exif(path: PathLike) -> Dict[str, Any]:
	try:
		return piexif.load(str(path))
	except (piexif.InvalidImageDataError, OSError, ValueError) as e:
		raise MetadataError(f"{path}: cannot read EXIF: {e}") from e


def exposure_time(exif: Dict[str, Any]) -> Optional[float]:
	"""Exposure time in seconds, falling back to the APEX shutter speed."""
	ifd = exif.get("Exif", {})
	exp = _rational_to_float(ifd.get(piexif.ExifIFD.ExposureTime))
	if exp is None:
		exp = _apex_to_time(_rational_to_float(ifd.get(piexif.ExifIFD.ShutterSpeedValue)))
	return exp


def iso_speed(exif: Dict[str, Any]) -> Optional[int]:
	return _to_int_safe(exif.get("Exif", {}).get(piexif.ExifIFD.ISOSpeedRatings))


def _require_positive(path: PathLike, name: str, value: Optional[float]) -> float:
	if value is None:
		raise MetadataError(f"{path}: missing {name}")
	if not math.isfinite(value) or value <= 0:
		raise MetadataError(f"{path}: invalid {name} {value!r}")
	return float(value)


class ExifMetadataProvider:
	"""Exposure times and gains read from each file's EXIF block.

	Gain is ISO / base ISO, so a shot at the base ISO has unit gain.
	"""

	def __init__(self, base_iso: Optional[float] = None, max_workers: Optional[int] = None):
		self.base_iso = base_iso if base_iso is not None else config.BASE_ISO
		if not math.isfinite(self.base_iso) or self.base_iso <= 0:
			raise MetadataError(f"Base ISO must be positive, got {self.base_iso!r}")
		self.max_workers = max_workers if max_workers is not None else config.MAX_WORKERS
		self._exif: Dict[str, Dict[str, Any]] = {}
		self._lock = threading.Lock()

	def _load_all(self, paths: Sequence[PathLike]) -> List[Dict[str, Any]]:
		# Each file is parsed once; both getters share the cache
		with self._lock:
			missing = [p for p in dict.fromkeys(str(p) for p in paths) if p not in self._exif]
			if missing:
				with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
					self._exif.update(zip(missing, pool.map(load_exif, missing)))
			return [self._exif[str(p)] for p in paths]

	def get_exposures(self, paths: Sequence[PathLike]) -> List[float]:
		exifs = self._load_all(paths)
		return [_require_positive(p, "exposure time", exposure_time(ex)) for p, ex in zip(paths, exifs)]

	def get_gains(self, paths: Sequence[PathLike]) -> List[float]:
		exifs = self._load_all(paths)
		isos = [_require_positive(p, "ISO speed", iso_speed(ex)) for p, ex in zip(paths, exifs)]
		return [iso / self.base_iso for iso in isos]


class StaticMetadataProvider:
	"""Fixed exposures/gains, e.g. from the command line or an upload form."""

	def __init__(self, exposures: Sequence[float], gains: Optional[Sequence[float]] = None):
		self.exposures = [float(e) for e in exposures]
		self.gains = [float(g) for g in gains] if gains is not None else None

	def _aligned(self, name: str, values: List[float], paths: Sequence[PathLike]) -> List[float]:
		if len(values) != len(paths):
			raise MetadataError(f"Got {len(values)} {name} for {len(paths)} images")
		return list(values)

	def get_exposures(self, paths: Sequence[PathLike]) -> List[float]:
		return self._aligned("exposures", self.exposures, paths)

	def get_gains(self, paths: Sequence[PathLike]) -> List[float]:
		if self.gains is None:
			return [1.0] * len(paths)
		return self._aligned("gains", self.gains, paths)


def parse_float_list(text: Optional[str]) -> Optional[List[float]]:
	if text is None or not text.strip():
		return None
	try:
		return [float(v) for v in text.replace(";", ",").split(",") if v.strip()]
	except ValueError as e:
		raise MetadataError(f"Cannot parse value list {text!r}: {e}") from e


def extract_metadata(paths: Sequence[PathLike]) -> Dict[str, Any]:
	"""Per-image EXIF summary, tolerant of missing fields. Used for job records."""
	records: List[Dict[str, Any]] = []
	for p in paths:
		info: Dict[str, Any] = {"filename": Path(p).name}
		try:
			ex = load_exif(p)
		except MetadataError:
			records.append(info)
			continue
		exif = ex.get("Exif", {})
		zeroth = ex.get("0th", {})
		info["exposure_time_s"] = exposure_time(ex)
		info["iso"] = iso_speed(ex)
		info["fnumber"] = _rational_to_float(exif.get(piexif.ExifIFD.FNumber))
		info["orientation"] = zeroth.get(piexif.ImageIFD.Orientation)
		dt = exif.get(piexif.ExifIFD.DateTimeOriginal) or zeroth.get(piexif.ImageIFD.DateTime)
		info["datetime_original"] = _bytes_to_str(dt)
		records.append(info)
	return {"images": records}


def write_metadata_json(metadata: Dict[str, Any], out_path: Path) -> str:
	out_path.parent.mkdir(parents=True, exist_ok=True)
	with out_path.open("w", encoding="utf-8") as f:
		json.dump(metadata, f, indent=2)
	return str(out_path)
