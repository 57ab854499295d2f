"""
Configuration management for the line measurement pipeline.

Loads YAML configuration with sensible defaults for every stage.
"""

import os
from dataclasses import asdict, dataclass, field

import yaml


@dataclass
class AlignmentConfig:
    """Configuration for relative-to-metric depth alignment."""
    stride: int = 4  # sample every k-th reference pixel
    min_samples: int = 20
    denom_epsilon: float = 1e-6
    min_absolute_depth: float = 0.05  # meters
    max_absolute_depth: float = 10.0
    max_scale: float = 100.0
    max_abs_shift: float = 10.0
    heuristic_near: float = 0.5  # assumed operating range without a reference
    heuristic_far: float = 5.0


@dataclass
class MeasureConfig:
    """Configuration for 3D line measurement and ranking."""
    min_length: float = 0.10  # meters
    top_k: int = 10  # 0 keeps every line above min_length


@dataclass
class SelectionConfig:
    """Configuration for nearest-line selection."""
    threshold: float = 40.0  # pixels, in detection image resolution


@dataclass
class PipelineRunConfig:
    """Configuration for per-frame scheduling and publication."""
    decimation: int = 5  # process every Nth delivered frame
    max_workers: int = 1
    on_invalid_alignment: str = "publish_flagged"  # or "reuse_last"
    min_line_pixels: float = 50.0


@dataclass
class VisualizationConfig:
    """Configuration for diagnostic depth renderings."""
    gradient: str = "default"
    max_error: float = 0.0  # 0 normalizes the error view to its own maximum


@dataclass
class TracingConfig:
    """Configuration for runtime tracing."""
    enabled: bool = False
    level: str = "INFO"
    file_path: str = None
    json_output: bool = False


@dataclass
class DebugConfig:
    """Configuration for debug artifact generation."""
    enabled: bool = False
    max_edge_scale: int = 1600


@dataclass
class LineMeasureConfig:
    """Complete pipeline configuration."""
    alignment: AlignmentConfig = field(default_factory=AlignmentConfig)
    measure: MeasureConfig = field(default_factory=MeasureConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    pipeline: PipelineRunConfig = field(default_factory=PipelineRunConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)


_SECTIONS = (
    "alignment",
    "measure",
    "selection",
    "pipeline",
    "visualization",
    "tracing",
    "debug",
)

INVALID_ALIGNMENT_POLICIES = ("publish_flagged", "reuse_last")


def load_config(config_path=None):
    """
    Load configuration from YAML file.

    Falls back to defaults for any missing values.
    """
    config = LineMeasureConfig()

    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

        config = _merge_config(config, yaml_data)

    validate_config(config)
    return config


def _merge_config(config, yaml_data):
    """Merge YAML data into config dataclass."""
    for section in _SECTIONS:
        if section not in yaml_data or not yaml_data[section]:
            continue
        target = getattr(config, section)
        for key, value in yaml_data[section].items():
            if hasattr(target, key):
                setattr(target, key, value)

    return config


def validate_config(config):
    """Raise ValueError for settings no stage can work with."""
    if config.alignment.stride < 1:
        raise ValueError(f"alignment.stride must be >= 1, got {config.alignment.stride}")
    if config.alignment.heuristic_far <= config.alignment.heuristic_near:
        raise ValueError("alignment.heuristic_far must exceed alignment.heuristic_near")
    if config.pipeline.decimation < 1:
        raise ValueError(f"pipeline.decimation must be >= 1, got {config.pipeline.decimation}")
    if config.pipeline.on_invalid_alignment not in INVALID_ALIGNMENT_POLICIES:
        raise ValueError(
            f"pipeline.on_invalid_alignment must be one of {INVALID_ALIGNMENT_POLICIES}, "
            f"got {config.pipeline.on_invalid_alignment!r}"
        )
    if config.measure.top_k < 0:
        raise ValueError(f"measure.top_k must be >= 0, got {config.measure.top_k}")


def save_default_config(path):
    """Save default configuration to YAML file for reference."""
    config = LineMeasureConfig()

    yaml_data = asdict(config)
    # file output is a CLI concern, keep it out of the reference file
    yaml_data["tracing"].pop("file_path", None)

    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)
