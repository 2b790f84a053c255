"""CLI entrypoint for countymap."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .arcgis import ArcGISClient, FetchError
from .config import AppConfig, load_config
from .pipeline import format_build_lines, run_build_map
from .util import ensure_directories, setup_logging
from .validate import Validator, format_report_lines

LOGGER = logging.getLogger("countymap.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="countymap",
        description="Render static county maps from ArcGIS FeatureServer layers.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default="config.yaml", help="Path to YAML config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    build_p = subparsers.add_parser("build", help="Fetch layers and render the map.")
    add_common(build_p)
    build_p.add_argument(
        "--output",
        default=None,
        help="Override project.output_image for this run.",
    )
    build_p.add_argument(
        "--no-manifest",
        action="store_true",
        help="Skip writing the run manifest JSON.",
    )

    validate_p = subparsers.add_parser("validate", help="Validate config and local input files.")
    add_common(validate_p)

    describe_p = subparsers.add_parser(
        "describe",
        help="Fetch and log FeatureServer layer metadata for the configured sources.",
    )
    add_common(describe_p)

    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    log_path = cfg.paths.logs_dir / "countymap.log"
    setup_logging(log_path, verbose=args.verbose)
    ensure_directories(cfg.paths.build_directories)
    return cfg


def _run_validate(cfg: AppConfig) -> int:
    report = Validator(cfg).run()
    for line in format_report_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


def _run_build(cfg: AppConfig, *, output: str | None, no_manifest: bool) -> int:
    LOGGER.info("Starting map build.")
    report = run_build_map(
        cfg,
        output_path=Path(output).resolve() if output else None,
        write_manifest=False if no_manifest else None,
    )
    for line in format_build_lines(report):
        LOGGER.info(line)
    if not report.ok:
        LOGGER.error("Map build aborted.")
        return 1
    LOGGER.info("Map written to %s", report.output_path)
    return 0


def _run_describe(cfg: AppConfig) -> int:
    client = ArcGISClient(cfg.sources.request)
    status = 0
    for label, layer in (
        ("primary", cfg.sources.primary),
        ("neighbors", cfg.sources.neighbors.layer),
    ):
        try:
            info = client.fetch_layer_info(layer.url)
        except FetchError as exc:
            LOGGER.error("Describe failed for %s layer: %s", label, exc)
            return 1
        fields = [str(item.get("name")) for item in info.get("fields") or [] if isinstance(item, dict)]
        LOGGER.info(
            "[%s] %s (%s), maxRecordCount=%s",
            label,
            info.get("name", "?"),
            info.get("geometryType", "?"),
            info.get("maxRecordCount", "?"),
        )
        LOGGER.info("[%s] fields: %s", label, ", ".join(fields) if fields else "(none reported)")
        if not fields:
            continue
        for key, name in (("name_field", layer.name_field), ("code_field", layer.code_field)):
            if name is not None and name not in fields:
                LOGGER.error("[%s] configured %s '%s' is not a layer field", label, key, name)
                status = 1
    return status


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "build":
        return _run_build(cfg, output=args.output, no_manifest=bool(args.no_manifest))
    if command == "validate":
        return _run_validate(cfg)
    if command == "describe":
        return _run_describe(cfg)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
