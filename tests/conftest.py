from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np
import piexif
import pytest
from PIL import Image

from poisson_hdr import config


class FakeProvider:
	def __init__(self, exposures: Sequence[float], gains: Optional[Sequence[float]] = None):
		self.exposures = list(exposures)
		self.gains = list(gains) if gains is not None else [1.0] * len(self.exposures)
		self.calls = []

	def get_exposures(self, paths):
		self.calls.append(("exposures", list(paths)))
		return list(self.exposures)

	def get_gains(self, paths):
		self.calls.append(("gains", list(paths)))
		return list(self.gains)


class FakeDecoder:
	def __init__(self, buffers: Dict[str, np.ndarray]):
		self.buffers = buffers

	def __call__(self, path):
		return self.buffers[str(path)]


@pytest.fixture
def data_dirs(tmp_path, monkeypatch):
	monkeypatch.setattr(config, "JOBS_DIR", tmp_path / "jobs")
	monkeypatch.setattr(config, "INPUT_DIR", tmp_path / "input")
	monkeypatch.setattr(config, "OUTPUT_DIR", tmp_path / "merged")
	return tmp_path


def exif_bytes(exposure: Optional[tuple] = None, iso: Optional[int] = None, shutter_apex: Optional[tuple] = None) -> bytes:
	exif = {}
	if exposure is not None:
		exif[piexif.ExifIFD.ExposureTime] = exposure
	if iso is not None:
		exif[piexif.ExifIFD.ISOSpeedRatings] = iso
	if shutter_apex is not None:
		exif[piexif.ExifIFD.ShutterSpeedValue] = shutter_apex
	return piexif.dump({"0th": {}, "Exif": exif})


@pytest.fixture
def make_jpeg(tmp_path):
	def _make(name: str, color=(128, 64, 32), size=(8, 6), exposure=(1, 100), iso=100, shutter_apex=None) -> Path:
		path = tmp_path / name
		img = Image.new("RGB", size, color)
		kwargs = {}
		if exposure is not None or iso is not None or shutter_apex is not None:
			kwargs["exif"] = exif_bytes(exposure, iso, shutter_apex)
		img.save(path, format="JPEG", quality=95, **kwargs)
		return path

	return _make


@pytest.fixture
def make_png(tmp_path):
	def _make(name: str, mode: str = "RGB", color=None, size=(4, 3)) -> Path:
		path = tmp_path / name
		if color is None:
			color = {"RGB": (200, 100, 50), "RGBA": (200, 100, 50, 255), "L": 120, "LA": (120, 255)}.get(mode, 0)
		Image.new(mode, size, color).save(path, format="PNG")
		return path

	return _make
