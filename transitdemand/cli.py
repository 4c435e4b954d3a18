from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

import yaml

from . import logging_config
from .config import load_config
from .pipeline import run_all

log = logging.getLogger("transitdemand.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transitdemand",
        description="Build commuter demand datasets from OSM region extracts",
    )
    parser.add_argument("--config", help="Path to config (YAML or JSON); default ./config.yaml")
    parser.add_argument("--region", nargs="+", metavar="CODE", help="Only process these region codes")
    parser.add_argument("--raw-dir", help="Override paths.raw_data_dir")
    parser.add_argument("--out-dir", help="Override paths.processed_data_dir")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, …")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        logging_config.configure(args.log_level or "INFO")
        log.error("Cannot load configuration: %s", exc)
        return 1

    level = args.log_level or os.getenv("TRANSITDEMAND_LOG_LEVEL") or config.logging.level
    logging_config.configure(level)

    if args.raw_dir:
        config.paths.raw_data_dir = Path(args.raw_dir)
    if args.out_dir:
        config.paths.processed_data_dir = Path(args.out_dir)

    if not config.regions:
        log.error("no regions configured")
        return 1

    log.info("Raw → %s | processed → %s",
             config.paths.raw_data_dir, config.paths.processed_data_dir)
    failed = run_all(config, args.region)
    if failed:
        log.error("%d region(s) failed: %s", len(failed), ", ".join(failed))
        return 1
    log.info("All regions done ✓")
    return 0
