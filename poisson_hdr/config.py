from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

# Relative per-channel sensor sensitivity (R, G, B)
CHANNEL_COEFFICIENTS: Tuple[float, float, float] = (1.0, 1.0, 1.0)

# ISO value that maps to gain 1.0
BASE_ISO = float(os.environ.get("POISSON_HDR_BASE_ISO", "100"))

DATA_DIR = Path(os.environ.get("POISSON_HDR_DATA_DIR", "data"))
JOBS_DIR = DATA_DIR / "jobs"
INPUT_DIR = DATA_DIR / "input"
OUTPUT_DIR = DATA_DIR / "merged"

# None lets ThreadPoolExecutor pick its default
MAX_WORKERS: Optional[int] = int(os.environ["POISSON_HDR_MAX_WORKERS"]) if os.environ.get("POISSON_HDR_MAX_WORKERS") else None

LOG_LEVEL = os.environ.get("POISSON_HDR_LOG_LEVEL", "INFO")


def configure_logging(level: Optional[str] = None) -> None:
	logging.basicConfig(
		level=(level or LOG_LEVEL).upper(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
