from __future__ import annotations


class HdrMergeError(Exception):
	"""Base class for failures that abort a merge."""

	kind = "unknown"


class MetadataError(HdrMergeError):
	kind = "metadata"


class DecodeError(HdrMergeError):
	kind = "decode"


class ShapeError(HdrMergeError):
	kind = "shape"


class InsufficientInputError(HdrMergeError):
	kind = "insufficient_input"


def error_kind(exc: BaseException) -> str:
	if isinstance(exc, HdrMergeError):
		return exc.kind
	return "unknown"
