from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence, Union

import numpy as np
from PIL import ExifTags, Image, UnidentifiedImageError

from poisson_hdr.services.errors import DecodeError, ShapeError

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".tif", ".tiff", ".bmp", ".webp", ".npy"}

_TRANSPOSES = {
	2: [Image.FLIP_LEFT_RIGHT],
	3: [Image.ROTATE_180],
	4: [Image.FLIP_TOP_BOTTOM],
	5: [Image.FLIP_LEFT_RIGHT, Image.ROTATE_90],
	6: [Image.ROTATE_270],
	7: [Image.FLIP_LEFT_RIGHT, Image.ROTATE_270],
	8: [Image.ROTATE_90],
}


def list_image_files(folder: Path) -> List[Path]:
	return sorted([p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_IMAGE_EXTS])


def apply_exif_orientation(img: Image.Image, exif) -> Image.Image:
	orientation = None
	if exif:
		tmp = {}
		for tag_id, value in exif.items():
			tag = ExifTags.TAGS.get(tag_id, tag_id)
			tmp[str(tag)] = value
		orientation = tmp.get("Orientation")
	if orientation is None:
		return img
	try:
		o = int(orientation)
	except (TypeError, ValueError):
		return img
	for method in _TRANSPOSES.get(o, []):
		img = img.transpose(method)
	return img


def _read_npy(path: Path) -> np.ndarray:
	try:
		arr = np.load(str(path))
	except (OSError, ValueError) as e:
		raise DecodeError(f"{path}: cannot load array: {e}") from e
	if not isinstance(arr, np.ndarray):
		# .npz archive saved under a .npy name
		arr.close()
		raise DecodeError(f"{path}: expected a single array, got {type(arr).__name__}")
	if arr.ndim != 3 or arr.shape[2] != 3:
		raise DecodeError(f"{path}: expected HxWx3 RGB array, got shape {arr.shape}")
	try:
		return arr.astype(np.float32)
	except (TypeError, ValueError) as e:
		raise DecodeError(f"{path}: non-numeric array of dtype {arr.dtype}") from e


def read_image(path: Union[str, Path]) -> np.ndarray:
	"""
	Decode one image into an HxWx3 float32 RGB buffer.

	8-bit RGB images are scaled to [0, 1]; ``.npy`` arrays are taken as-is.
	Anything that is not plain 3-channel RGB (alpha, grayscale, palette,
	CMYK, 16-bit single channel, ...) raises DecodeError instead of being
	converted.
	"""
	p = Path(path)
	if p.suffix.lower() == ".npy":
		return _read_npy(p)
	try:
		with Image.open(p) as img:
			if img.mode != "RGB":
				raise DecodeError(f"{p}: unsupported color mode {img.mode!r}, expected RGB")
			img = apply_exif_orientation(img, img.getexif())
			arr = np.asarray(img, dtype=np.float32) / 255.0
	except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
		raise DecodeError(f"{p}: cannot decode image: {e}") from e
	logger.debug("Decoded %s: %dx%d", p.name, arr.shape[1], arr.shape[0])
	return arr


def check_same_shape(buffers: Sequence[np.ndarray]) -> None:
	if not buffers:
		return
	ref = buffers[0].shape
	for idx, buf in enumerate(buffers[1:], start=1):
		if buf.shape != ref:
			raise ShapeError(f"Buffer {idx} has shape {buf.shape}, expected {ref}")
