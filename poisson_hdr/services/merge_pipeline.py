from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from poisson_hdr import config
from poisson_hdr.services.errors import error_kind
from poisson_hdr.services.metadata import ExifMetadataProvider, StaticMetadataProvider, extract_metadata, write_metadata_json
from poisson_hdr.services.poisson import estimate_with_metadata
from poisson_hdr.services.status_store import write_status

logger = logging.getLogger(__name__)


def _save_inputs(job_id: str, files_meta: List[Dict[str, Any]]) -> List[Path]:
	in_dir = config.INPUT_DIR / job_id
	in_dir.mkdir(parents=True, exist_ok=True)
	saved = []
	# Prefix with the upload index so caller order survives duplicate names
	for idx, fm in enumerate(files_meta):
		name = Path(fm["filename"]).name
		p = in_dir / f"{idx:03d}_{name}"
		with p.open("wb") as f:
			f.write(fm["data"])
		saved.append(p)
	return saved


def run_pipeline(
	job_id: str,
	files_meta: List[Dict[str, Any]],
	exposures: Optional[List[float]] = None,
	gains: Optional[List[float]] = None,
) -> None:
	status: Dict[str, Any] = {"job_id": job_id}
	try:
		# 1) Save originals in upload order
		write_status(job_id, {**status, "status": "saving", "step": "Save Images"})
		saved = _save_inputs(job_id, files_meta)
		status["inputs"] = [p.name for p in saved]

		# 2) Record EXIF summary
		write_status(job_id, {**status, "status": "metadata", "step": "Extract Metadata"})
		metadata = extract_metadata(saved)
		status["metadata"] = write_metadata_json(metadata, config.INPUT_DIR / job_id / "metadata.json")

		# 3) Merge
		write_status(job_id, {**status, "status": "merging", "step": "Poisson Merge"})
		if exposures is not None:
			provider = StaticMetadataProvider(exposures, gains)
		else:
			provider = ExifMetadataProvider()
		merged, used_exposures, used_gains = estimate_with_metadata(saved, provider=provider)

		out_path = config.OUTPUT_DIR / job_id / "merged.npy"
		out_path.parent.mkdir(parents=True, exist_ok=True)
		np.save(str(out_path), merged)
		logger.info("Job %s merged %d images into %s", job_id, len(saved), out_path)

		# 4) Complete
		write_status(job_id, {
			**status,
			"status": "completed",
			"step": "Done",
			"exposures": used_exposures,
			"gains": used_gains,
			"merged": str(out_path),
			"shape": list(merged.shape),
			"radiance_min": float(np.min(merged)),
			"radiance_max": float(np.max(merged)),
			"radiance_mean": float(np.mean(merged)),
		})
	except Exception as e:
		logger.warning("Job %s failed: %s", job_id, e)
		write_status(job_id, {**status, "status": "error", "error_kind": error_kind(e), "error": str(e)})
