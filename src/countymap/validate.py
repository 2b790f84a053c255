"""Validation layer for config and local input files."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .config import AppConfig
from .io_local import MarineRepository
from .labels import load_label_offsets


@dataclass(slots=True)
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


class Validator:
    """Offline checks; remote layers are not contacted."""

    def __init__(self, cfg: AppConfig) -> None:
        self.cfg = cfg

    def run(self) -> ValidationReport:
        report = ValidationReport()
        self._validate_sources(report)
        self._validate_marine(report)
        self._validate_label_offsets(report)
        self._validate_style(report)
        return report

    def _validate_sources(self, report: ValidationReport) -> None:
        for label, layer in (
            ("primary", self.cfg.sources.primary),
            ("neighbors", self.cfg.sources.neighbors.layer),
        ):
            if not layer.url.startswith(("http://", "https://")):
                report.add_error(f"sources.{label}.url must be an http(s) URL: {layer.url}")
                continue
            if layer.out_sr != 4326:
                report.add_warning(
                    f"sources.{label}.out_sr is {layer.out_sr}; label offsets assume degrees (EPSG:4326)"
                )
            report.add_info(f"{label} query: {layer.to_query().to_url()}")
        if self.cfg.sources.primary.out_sr != self.cfg.sources.neighbors.layer.out_sr:
            report.add_error("sources.primary.out_sr and sources.neighbors.out_sr must match")
        report.add_info("Neighbor regions kept: " + ", ".join(self.cfg.sources.neighbors.keep))

    def _validate_marine(self, report: ValidationReport) -> None:
        repo = MarineRepository(self.cfg.sources.marine.path)
        if not repo.exists():
            report.add_error(f"Marine data resource not found: {self.cfg.sources.marine.path}")
        else:
            report.add_info(f"Marine data found at {self.cfg.sources.marine.path}")

    def _validate_label_offsets(self, report: ValidationReport) -> None:
        path = self.cfg.paths.label_offsets
        if not path.exists():
            report.add_warning(f"Label offsets file not found, no labels will be nudged: {path}")
            return
        try:
            offsets = load_label_offsets(path)
        except (OSError, ValueError) as exc:
            report.add_error(f"Failed parsing label offsets: {exc}")
            return
        report.add_info(f"Loaded {len(offsets)} label offset entries")

    def _validate_style(self, report: ValidationReport) -> None:
        image = self.cfg.render.image
        if image.width_px <= 0 or image.height_px <= 0:
            report.add_error("render.image width_px and height_px must be > 0")
        if self.cfg.render.labels.text_column == self.cfg.sources.primary.name_field:
            report.add_error(
                "render.labels.text_column must differ from sources.primary.name_field"
            )


def format_report_lines(report: ValidationReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Validation passed with no errors.")
    return lines
