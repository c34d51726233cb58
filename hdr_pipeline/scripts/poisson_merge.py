"""
Poisson Merge - noise-aware HDR merge of a bracketed stack

Reads exposure time and ISO from EXIF (or takes them from --exposures /
--gains), merges the images in the given order and saves the radiance map
as a float32 .npy array.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

from poisson_hdr import config
from poisson_hdr.services.errors import HdrMergeError
from poisson_hdr.services.image_utils import list_image_files
from poisson_hdr.services.metadata import (
    ExifMetadataProvider,
    StaticMetadataProvider,
    extract_metadata,
    parse_float_list,
    write_metadata_json,
)
from poisson_hdr.services.poisson import merge_stack

logger = logging.getLogger("poisson_merge")


def collect_inputs(inputs: List[str]) -> List[Path]:
    paths: List[Path] = []
    for item in inputs:
        p = Path(item)
        if p.is_dir():
            paths.extend(list_image_files(p))
        else:
            paths.append(p)
    return paths


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Merge a bracketed exposure stack into an HDR radiance map (Poisson photon noise estimator)")
    parser.add_argument("inputs", nargs="+", help="Image files in merge order, or a folder holding one bracket set")
    parser.add_argument("--output", required=True, help="Output .npy path for the merged radiance")
    parser.add_argument("--exposures", help="Comma-separated exposure times overriding EXIF")
    parser.add_argument("--gains", help="Comma-separated gains overriding EXIF ISO (requires --exposures)")
    parser.add_argument("--base-iso", type=float, default=None, help=f"ISO mapped to unit gain (default {config.BASE_ISO:g})")
    parser.add_argument("--workers", type=int, default=config.MAX_WORKERS, help="Thread pool size")
    parser.add_argument("--metadata-json", help="Also write an EXIF summary of the inputs here")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging(args.log_level)

    paths = collect_inputs(args.inputs)
    try:
        exposures = parse_float_list(args.exposures)
        gains = parse_float_list(args.gains)
        if exposures is not None:
            provider = StaticMetadataProvider(exposures, gains)
        elif gains is not None:
            logger.error("--gains requires --exposures")
            return 2
        else:
            provider = ExifMetadataProvider(base_iso=args.base_iso, max_workers=args.workers)
    except HdrMergeError as e:
        logger.error("%s", e)
        return 2

    if args.metadata_json:
        write_metadata_json(extract_metadata(paths), Path(args.metadata_json))

    logger.info("Merging %d images", len(paths))
    result = merge_stack(paths, provider=provider, max_workers=args.workers)
    if not result.ok:
        logger.error("Merge failed [%s]: %s", result.error_kind, result.message)
        return 1

    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    np.save(str(out_path), result.radiance)
    logger.info("Saved %s shape=%s", out_path, result.radiance.shape)
    return 0


if __name__ == "__main__":
    sys.exit(main())
