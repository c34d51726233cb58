from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, UploadFile

from poisson_hdr.services.errors import MetadataError
from poisson_hdr.services.merge_pipeline import run_pipeline
from poisson_hdr.services.metadata import parse_float_list
from poisson_hdr.services.status_store import read_status, write_status


router = APIRouter(prefix="/pipeline", tags=["merge"])


def _slugify(text: str) -> str:
	return "".join(ch if (ch.isalnum() or ch in ("-", "_")) else "-" for ch in text).strip("-_").lower()


@router.post("/upload", summary="Upload a bracketed exposure stack and start a background merge")
async def upload(
	background_tasks: BackgroundTasks,
	files: List[UploadFile] = File(...),
	exposures: Optional[str] = Form(None),
	gains: Optional[str] = Form(None),
):
	try:
		exposure_list = parse_float_list(exposures)
		gain_list = parse_float_list(gains)
	except MetadataError as e:
		raise HTTPException(status_code=422, detail=str(e))
	if gain_list is not None and exposure_list is None:
		raise HTTPException(status_code=422, detail="gains override requires exposures")

	files_meta = []
	for f in files:
		data = await f.read()
		files_meta.append({"filename": f.filename or "image.jpg", "data": data})
	filenames = [m["filename"] for m in files_meta]
	# "<first_filename_stem>_<ddmmyyyy>_<suffix>"
	first_stem = _slugify(Path(filenames[0]).stem) if filenames else "job"
	date_str = datetime.now().strftime("%d%m%Y")
	job_id = f"{first_stem or 'job'}_{date_str}_{uuid.uuid4().hex[:6]}"
	write_status(job_id, {"job_id": job_id, "status": "queued", "step": "Queued"})
	background_tasks.add_task(run_pipeline, job_id, files_meta, exposure_list, gain_list)
	return {
		"job_id": job_id,
		"status": "queued",
		"num_files": len(files_meta),
		"filenames": filenames,
		"status_endpoint": f"/pipeline/status/{job_id}",
		"result_endpoint": f"/pipeline/result/{job_id}",
	}


@router.get("/status/{job_id}", summary="Get pipeline status")
def status(job_id: str):
	return read_status(job_id)


@router.get("/result/{job_id}", summary="Get merge result")
def result(job_id: str):
	data = read_status(job_id)
	if data.get("status") != "completed":
		return {
			"job_id": job_id,
			"status": data.get("status"),
			"error_kind": data.get("error_kind"),
			"message": data.get("error", "not completed yet"),
		}
	return {
		"job_id": job_id,
		"status": "completed",
		"inputs": data.get("inputs", []),
		"metadata": data.get("metadata"),
		"exposures": data.get("exposures", []),
		"gains": data.get("gains", []),
		"merged": data.get("merged"),
		"shape": data.get("shape"),
		"radiance_min": data.get("radiance_min"),
		"radiance_max": data.get("radiance_max"),
		"radiance_mean": data.get("radiance_mean"),
	}
