"""End-to-end map build: fetch, derive, render."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from .arcgis import ArcGISClient, FetchError
from .config import AppConfig
from .geometry import derive_centroids, filter_regions, missing_region_names
from .io_local import MarineRepository, ResourceNotFoundError
from .labels import add_wrapped_names, build_labels, load_label_offsets, unused_offset_names
from .layers import LayerOrderError, build_layer_stack
from .models import BoundingBox, RunManifest
from .render import MapRenderer, RenderRequest, layer_names
from .util import detect_git_commit, format_name_list, sha256_file, write_json


_LOGGER = logging.getLogger("countymap.pipeline")


@dataclass(slots=True)
class MapBuildReport:
    output_path: Path | None = None
    manifest_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


@dataclass(frozen=True, slots=True)
class MapLayers:
    """Every collection the renderer needs, fetched and derived."""

    primary: Any
    neighbors: Any
    marine: Any
    centroids: Any
    extent: BoundingBox


def run_build_map(
    cfg: AppConfig,
    *,
    client: ArcGISClient | None = None,
    output_path: Path | None = None,
    write_manifest: bool | None = None,
) -> MapBuildReport:
    """Fetch every layer, derive labels, and render the map image.

    The first failure is recorded on the report and ends the run.
    """
    t0 = time.perf_counter()
    target = output_path or cfg.project.output_image
    report = MapBuildReport()
    client = client or ArcGISClient(cfg.sources.request)

    try:
        layers = collect_layers(cfg, client=client, report=report)
    except FetchError as exc:
        report.add_error(f"Fetch failed for {exc.url}: {exc.cause}")
        return report
    except ResourceNotFoundError as exc:
        report.add_error(str(exc))
        return report
    except ValueError as exc:
        report.add_error(f"Layer preparation failed: {exc}")
        return report

    try:
        offsets = load_label_offsets(cfg.paths.label_offsets)
    except (OSError, ValueError) as exc:
        report.add_error(f"Failed loading label offsets '{cfg.paths.label_offsets}': {exc}")
        return report
    report.add_info(f"Loaded {len(offsets)} label offset entries")

    name_field = cfg.sources.primary.name_field
    unused = unused_offset_names(offsets, layers.primary[name_field])
    if unused:
        report.add_warning(
            "Label offsets name features not in primary layer: " + format_name_list(unused)
        )

    text_field = cfg.render.labels.text_column if cfg.render.labels.wrap_names else name_field
    try:
        labels = build_labels(
            layers.centroids,
            name_field=name_field,
            text_field=text_field,
            offsets=offsets,
        )
        ops = build_layer_stack(
            neighbors=layers.neighbors,
            primary=layers.primary,
            marine=layers.marine,
            labels=labels,
            style=cfg.render.style,
        )
    except LayerOrderError as exc:
        report.add_error(f"Invalid layer order: {exc}")
        return report
    except ValueError as exc:
        report.add_error(f"Label placement failed: {exc}")
        return report
    report.add_info("Layer order: " + " > ".join(layer_names(ops)))

    renderer = MapRenderer(cfg.render)
    try:
        renderer.render(
            RenderRequest(
                ops=ops,
                extent=layers.extent,
                output_path=target,
                title=cfg.project.title,
                geographic=bool(layers.primary.crs is None or layers.primary.crs.is_geographic),
            )
        )
    except (OSError, ValueError) as exc:
        report.add_error(f"Rendering failed for {target}: {exc}")
        return report
    report.output_path = target

    report.summary = {
        "primary_features": len(layers.primary),
        "neighbor_features": len(layers.neighbors),
        "marine_features": len(layers.marine),
        "labels": len(labels),
        "offsets_applied": sum(1 for label in labels if label.name in offsets),
    }
    report.add_info(
        "Build summary: " + ", ".join(f"{key}={value}" for key, value in report.summary.items())
    )

    should_write_manifest = cfg.build.write_manifest if write_manifest is None else write_manifest
    if should_write_manifest:
        manifest = RunManifest.create(
            config_hash_sha256=sha256_file(cfg.source_path),
            git_commit=detect_git_commit(cfg.source_path.parent),
            feature_counts=report.summary,
            artifacts={
                "map_image": str(target),
                "label_offsets": str(cfg.paths.label_offsets),
                "marine_source": str(cfg.sources.marine.path),
            },
        )
        manifest_path = cfg.paths.manifests_dir / "map_manifest.json"
        write_json(manifest_path, manifest.to_dict())
        report.manifest_path = manifest_path
        report.add_info(f"Run manifest written to {manifest_path}")

    _LOGGER.info("Map build finished in %.2fs", time.perf_counter() - t0)
    return report


def collect_layers(cfg: AppConfig, *, client: ArcGISClient, report: MapBuildReport) -> MapLayers:
    """Fetch and derive every layer; raises on the first failure."""
    primary_cfg = cfg.sources.primary
    primary = client.fetch_features(primary_cfg.to_query())
    if len(primary) == 0:
        raise ValueError(f"Primary layer returned no features: {primary_cfg.url}")
    report.add_info(f"Fetched {len(primary)} primary features from {primary_cfg.url}")

    neighbors_cfg = cfg.sources.neighbors
    regions = client.fetch_features(neighbors_cfg.layer.to_query())
    neighbors = filter_regions(regions, neighbors_cfg.keep, name_field=neighbors_cfg.layer.name_field)
    if neighbors.crs is not None and primary.crs is not None and neighbors.crs != primary.crs:
        _LOGGER.info("Reprojecting neighbor regions from %s to %s", neighbors.crs, primary.crs)
        neighbors = neighbors.to_crs(primary.crs)
    report.add_info(
        f"Kept {len(neighbors)} of {len(regions)} neighbor regions "
        f"({', '.join(neighbors_cfg.keep)})"
    )
    missing = missing_region_names(regions, neighbors_cfg.keep, name_field=neighbors_cfg.layer.name_field)
    if missing:
        report.add_warning("Neighbor regions not found: " + format_name_list(missing))

    marine = MarineRepository(cfg.sources.marine.path).load(primary.crs)
    report.add_info(f"Loaded {len(marine)} marine features from {cfg.sources.marine.path}")

    centroids = derive_centroids(primary)
    centroids = add_wrapped_names(
        centroids,
        primary_cfg.name_field,
        column=cfg.render.labels.text_column,
    )
    extent = BoundingBox.from_frame(primary)
    report.add_info(
        "Primary extent: "
        + ", ".join(f"{value:.4f}" for value in extent.as_tuple())
    )
    return MapLayers(
        primary=primary,
        neighbors=neighbors,
        marine=marine,
        centroids=centroids,
        extent=extent,
    )


def format_build_lines(report: MapBuildReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Map build completed with no errors.")
    return lines
