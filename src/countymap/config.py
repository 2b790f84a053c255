"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .models import QUERY_FORMATS, LayerQuery


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _optional_str(value: Any, field_name: str) -> str | None:
    return None if value is None else _str(value, field_name)


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _str_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    out: list[str] = []
    for idx, item in enumerate(value):
        out.append(_str(item, f"{field_name}[{idx}]"))
    return tuple(out)


def _out_fields(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ("*",)
    if isinstance(value, str):
        return (_str(value, field_name),)
    return _str_list(value, field_name)


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    title: str
    output_image: Path

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> ProjectConfig:
        return cls(
            title=_str(raw.get("title"), "project.title"),
            output_image=_path_from_cfg(raw.get("output_image"), "project.output_image", root_dir),
        )


@dataclass(frozen=True, slots=True)
class RequestConfig:
    timeout_s: int
    user_agent: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RequestConfig:
        timeout_s = _int(raw.get("timeout_s", 60), "sources.request.timeout_s")
        if timeout_s <= 0:
            raise ValueError("sources.request.timeout_s must be > 0")
        return cls(
            timeout_s=timeout_s,
            user_agent=_str(raw.get("user_agent", "countymap/0.1"), "sources.request.user_agent"),
        )


@dataclass(frozen=True, slots=True)
class LayerSourceConfig:
    """One remote FeatureServer layer plus the attribute fields we read from it."""

    url: str
    where: str
    out_fields: tuple[str, ...]
    out_sr: int
    format: str
    page_size: int | None
    name_field: str
    code_field: str | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], prefix: str) -> LayerSourceConfig:
        fmt = _str(raw.get("format", "geojson"), f"{prefix}.format").casefold()
        if fmt not in QUERY_FORMATS:
            raise ValueError(
                f"{prefix}.format must be one of: " + ", ".join(QUERY_FORMATS)
            )
        page_size_raw = raw.get("page_size")
        page_size = None if page_size_raw is None else _int(page_size_raw, f"{prefix}.page_size")
        if page_size is not None and page_size < 1:
            raise ValueError(f"{prefix}.page_size must be >= 1")
        return cls(
            url=_str(raw.get("url"), f"{prefix}.url"),
            where=_str(raw.get("where", "1=1"), f"{prefix}.where"),
            out_fields=_out_fields(raw.get("out_fields"), f"{prefix}.out_fields"),
            out_sr=_int(raw.get("out_sr", 4326), f"{prefix}.out_sr"),
            format=fmt,
            page_size=page_size,
            name_field=_str(raw.get("name_field"), f"{prefix}.name_field"),
            code_field=_optional_str(raw.get("code_field"), f"{prefix}.code_field"),
        )

    def to_query(self) -> LayerQuery:
        return LayerQuery(
            layer_url=self.url,
            where=self.where,
            out_fields=self.out_fields,
            out_sr=self.out_sr,
            fmt=self.format,
            page_size=self.page_size,
        )


@dataclass(frozen=True, slots=True)
class NeighborSourceConfig:
    layer: LayerSourceConfig
    keep: tuple[str, ...]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> NeighborSourceConfig:
        keep = _str_list(raw.get("keep"), "sources.neighbors.keep")
        if not keep:
            raise ValueError("sources.neighbors.keep must list at least one region name")
        return cls(
            layer=LayerSourceConfig.from_mapping(raw, "sources.neighbors"),
            keep=keep,
        )


@dataclass(frozen=True, slots=True)
class MarineSourceConfig:
    path: Path

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> MarineSourceConfig:
        return cls(path=_path_from_cfg(raw.get("path"), "sources.marine.path", root_dir))


@dataclass(frozen=True, slots=True)
class SourcesConfig:
    request: RequestConfig
    primary: LayerSourceConfig
    neighbors: NeighborSourceConfig
    marine: MarineSourceConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> SourcesConfig:
        request_raw = raw.get("request")
        return cls(
            request=RequestConfig.from_mapping(
                {} if request_raw is None else _mapping(request_raw, "sources.request")
            ),
            primary=LayerSourceConfig.from_mapping(
                _mapping(raw.get("primary"), "sources.primary"), "sources.primary"
            ),
            neighbors=NeighborSourceConfig.from_mapping(
                _mapping(raw.get("neighbors"), "sources.neighbors")
            ),
            marine=MarineSourceConfig.from_mapping(
                _mapping(raw.get("marine"), "sources.marine"), root_dir
            ),
        )


@dataclass(frozen=True, slots=True)
class PathsConfig:
    label_offsets: Path
    build_root: Path
    manifests_dir: Path
    logs_dir: Path

    @property
    def build_directories(self) -> tuple[Path, ...]:
        return (self.build_root, self.manifests_dir, self.logs_dir)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PathsConfig:
        return cls(
            label_offsets=_path_from_cfg(raw.get("label_offsets"), "paths.label_offsets", root_dir),
            build_root=_path_from_cfg(raw.get("build_root"), "paths.build_root", root_dir),
            manifests_dir=_path_from_cfg(raw.get("manifests_dir"), "paths.manifests_dir", root_dir),
            logs_dir=_path_from_cfg(raw.get("logs_dir"), "paths.logs_dir", root_dir),
        )


@dataclass(frozen=True, slots=True)
class RenderImageConfig:
    width_px: int
    height_px: int
    dpi: int
    background: str
    format: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderImageConfig:
        dpi = _int(raw.get("dpi"), "render.image.dpi")
        if dpi <= 0:
            raise ValueError("render.image.dpi must be > 0")
        return cls(
            width_px=_int(raw.get("width_px"), "render.image.width_px"),
            height_px=_int(raw.get("height_px"), "render.image.height_px"),
            dpi=dpi,
            background=_str(raw.get("background"), "render.image.background"),
            format=_str(raw.get("format"), "render.image.format"),
        )


@dataclass(frozen=True, slots=True)
class RenderExtentConfig:
    padding_ratio: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderExtentConfig:
        padding_ratio = _float(raw.get("padding_ratio", 0.0), "render.extent.padding_ratio")
        if padding_ratio < 0:
            raise ValueError("render.extent.padding_ratio must be >= 0")
        return cls(padding_ratio=padding_ratio)


@dataclass(frozen=True, slots=True)
class RenderStyleConfig:
    neighbor_fill: str
    primary_fill: str
    primary_fill_column: str | None
    primary_cmap: str
    marine_fill: str
    outline_color: str
    outline_width: float
    label_color: str
    font_family: str
    font_size: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderStyleConfig:
        return cls(
            neighbor_fill=_str(raw.get("neighbor_fill"), "render.style.neighbor_fill"),
            primary_fill=_str(raw.get("primary_fill"), "render.style.primary_fill"),
            primary_fill_column=_optional_str(
                raw.get("primary_fill_column"), "render.style.primary_fill_column"
            ),
            primary_cmap=_str(raw.get("primary_cmap", "YlGn"), "render.style.primary_cmap"),
            marine_fill=_str(raw.get("marine_fill"), "render.style.marine_fill"),
            outline_color=_str(raw.get("outline_color"), "render.style.outline_color"),
            outline_width=_float(raw.get("outline_width"), "render.style.outline_width"),
            label_color=_str(raw.get("label_color"), "render.style.label_color"),
            font_family=_str(raw.get("font_family"), "render.style.font_family"),
            font_size=_float(raw.get("font_size"), "render.style.font_size"),
        )


@dataclass(frozen=True, slots=True)
class LabelsConfig:
    wrap_names: bool
    text_column: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> LabelsConfig:
        return cls(
            wrap_names=_bool(raw.get("wrap_names", True), "render.labels.wrap_names"),
            text_column=_str(raw.get("text_column", "label_name"), "render.labels.text_column"),
        )


@dataclass(frozen=True, slots=True)
class RenderConfig:
    image: RenderImageConfig
    extent: RenderExtentConfig
    style: RenderStyleConfig
    labels: LabelsConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderConfig:
        extent_raw = raw.get("extent")
        labels_raw = raw.get("labels")
        return cls(
            image=RenderImageConfig.from_mapping(_mapping(raw.get("image"), "render.image")),
            extent=RenderExtentConfig.from_mapping(
                {} if extent_raw is None else _mapping(extent_raw, "render.extent")
            ),
            style=RenderStyleConfig.from_mapping(_mapping(raw.get("style"), "render.style")),
            labels=LabelsConfig.from_mapping(
                {} if labels_raw is None else _mapping(labels_raw, "render.labels")
            ),
        )


@dataclass(frozen=True, slots=True)
class BuildConfig:
    write_manifest: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BuildConfig:
        return cls(write_manifest=_bool(raw.get("write_manifest", True), "build.write_manifest"))


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path
    project: ProjectConfig
    sources: SourcesConfig
    paths: PathsConfig
    render: RenderConfig
    build: BuildConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path) -> AppConfig:
        root_dir = source_path.parent.resolve()
        build_raw = raw.get("build")
        return cls(
            source_path=source_path.resolve(),
            project=ProjectConfig.from_mapping(_mapping(raw.get("project"), "project"), root_dir),
            sources=SourcesConfig.from_mapping(_mapping(raw.get("sources"), "sources"), root_dir),
            paths=PathsConfig.from_mapping(_mapping(raw.get("paths"), "paths"), root_dir),
            render=RenderConfig.from_mapping(_mapping(raw.get("render"), "render")),
            build=BuildConfig.from_mapping({} if build_raw is None else _mapping(build_raw, "build")),
        )


def load_config(path: str | Path) -> AppConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
