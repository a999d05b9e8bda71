# python/lightbasis/config.py
# Pipeline configuration parsing for basis identification, integration and optimisation
# Exists to turn JSON files, mappings and keyword overrides into validated dataclasses
# RELEVANT FILES: python/lightbasis/pipeline.py, python/lightbasis/identify.py, tests/test_config.py
from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

ConfigSource = Union["PipelineConfig", Mapping[str, Any], str, Path, None]

_STRATEGIES: Dict[str, str] = {
    "manual": "manual",
    "none": "manual",
    "medianenergy": "median-energy",
    "median": "median-energy",
    "centroid": "median-energy",
    "energycentroid": "median-energy",
    "inversecdf": "inverse-cdf",
    "importance": "inverse-cdf",
    "importancesampling": "inverse-cdf",
    "kmeans": "inverse-cdf",
    "masks": "masks",
    "mask": "masks",
    "directions": "directions",
    "lightstage": "directions",
}

_LIGHT_TYPES: Dict[str, str] = {
    "point": "point",
    "pointlight": "point",
    "gaussian": "gaussian",
    "gauss": "gaussian",
}

_OPTIMIZATION_MODES: Dict[str, str] = {
    "disabled": "disabled",
    "none": "disabled",
    "off": "disabled",
    "original": "original",
    "originalspace": "original",
    "full": "original",
    "pca": "pca",
    "pcaspace": "pca",
}


def _normalize_key(value: Any) -> str:
    return "".join(
        c
        for c in str(value).strip().lower()
        if c not in {"-", "_", " ", "."}
    )


def _normalize_choice(value: Any, mapping: Mapping[str, str], label: str) -> str:
    key = _normalize_key(value)
    if key not in mapping:
        raise ValueError(f"Unknown {label}: {value!r}")
    return mapping[key]


def _to_float2(value: Any, label: str) -> Tuple[float, float]:
    if value is None:
        raise ValueError(f"{label} requires two floats")
    if isinstance(value, (int, float)):
        return (float(value), float(value))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return (float(value[0]), float(value[1]))
    raise ValueError(f"{label} must be a number or a sequence of two numeric values")


def _to_int_map(value: Any, label: str) -> Dict[int, int]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{label} must be a mapping of condition index to value")
    return {int(k): int(v) for k, v in value.items()}


def _to_float2_map(value: Any, label: str) -> Dict[int, Tuple[float, float]]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{label} must be a mapping of condition index to value")
    return {int(k): _to_float2(v, f"{label}[{k}]") for k, v in value.items()}


@dataclass
class AreaLightParams:
    spacing: int = 25

    def to_dict(self) -> dict:
        return {"spacing": self.spacing}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default: Optional["AreaLightParams"] = None) -> "AreaLightParams":
        base = copy.deepcopy(default) if default is not None else cls()
        if "spacing" in data:
            base.spacing = int(data["spacing"])
        return base


@dataclass
class IdentificationParams:
    strategy: str = "manual"
    num_samples: int = 200
    tolerance: float = 0.01
    clusters: int = 1
    clusters_per_condition: Dict[int, int] = field(default_factory=dict)
    attempts: int = 5
    max_iterations: int = 10000
    epsilon: float = 1e-4
    seed: int = 0

    def cluster_count(self, condition: int) -> int:
        return int(self.clusters_per_condition.get(int(condition), self.clusters))

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy,
            "num_samples": self.num_samples,
            "tolerance": self.tolerance,
            "clusters": self.clusters,
            "clusters_per_condition": {str(k): v for k, v in self.clusters_per_condition.items()},
            "attempts": self.attempts,
            "max_iterations": self.max_iterations,
            "epsilon": self.epsilon,
            "seed": self.seed,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default: Optional["IdentificationParams"] = None) -> "IdentificationParams":
        base = copy.deepcopy(default) if default is not None else cls()
        if "strategy" in data:
            base.strategy = _normalize_choice(data["strategy"], _STRATEGIES, "identification strategy")
        if "num_samples" in data:
            base.num_samples = int(data["num_samples"])
        if "tolerance" in data:
            base.tolerance = float(data["tolerance"])
        if "clusters" in data:
            base.clusters = int(data["clusters"])
        if "clusters_per_condition" in data:
            base.clusters_per_condition = _to_int_map(data["clusters_per_condition"], "clusters_per_condition")
        if "attempts" in data:
            base.attempts = int(data["attempts"])
        if "max_iterations" in data:
            base.max_iterations = int(data["max_iterations"])
        if "epsilon" in data:
            base.epsilon = float(data["epsilon"])
        if "seed" in data:
            base.seed = int(data["seed"])
        return base


@dataclass
class IntegrationParams:
    light_type: str = "point"
    variance: Tuple[float, float] = (300.0, 300.0)
    variance_per_condition: Dict[int, Tuple[float, float]] = field(default_factory=dict)
    mask_threshold: float = 127.0 / 255.0

    def to_dict(self) -> dict:
        return {
            "light_type": self.light_type,
            "variance": list(self.variance),
            "variance_per_condition": {str(k): list(v) for k, v in self.variance_per_condition.items()},
            "mask_threshold": self.mask_threshold,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default: Optional["IntegrationParams"] = None) -> "IntegrationParams":
        base = copy.deepcopy(default) if default is not None else cls()
        if "light_type" in data:
            base.light_type = _normalize_choice(data["light_type"], _LIGHT_TYPES, "light type")
        if "variance" in data:
            base.variance = _to_float2(data["variance"], "variance")
        if "variance_per_condition" in data:
            base.variance_per_condition = _to_float2_map(data["variance_per_condition"], "variance_per_condition")
        if "mask_threshold" in data:
            base.mask_threshold = float(data["mask_threshold"])
        return base


@dataclass
class OptimizationParams:
    mode: str = "disabled"
    lower: float = 0.0
    upper: float = 10.0
    history: int = 10
    tolerance: float = 1e-9
    max_iterations: int = 15000
    n_components: Optional[int] = None

    @property
    def enabled(self) -> bool:
        return self.mode != "disabled"

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "lower": self.lower,
            "upper": self.upper,
            "history": self.history,
            "tolerance": self.tolerance,
            "max_iterations": self.max_iterations,
            "n_components": self.n_components,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default: Optional["OptimizationParams"] = None) -> "OptimizationParams":
        base = copy.deepcopy(default) if default is not None else cls()
        if "mode" in data:
            base.mode = _normalize_choice(data["mode"], _OPTIMIZATION_MODES, "optimization mode")
        if "bounds" in data:
            base.lower, base.upper = _to_float2(data["bounds"], "bounds")
        if "lower" in data:
            base.lower = float(data["lower"])
        if "upper" in data:
            base.upper = float(data["upper"])
        if "history" in data:
            base.history = int(data["history"])
        if "tolerance" in data:
            base.tolerance = float(data["tolerance"])
        if "max_iterations" in data:
            base.max_iterations = int(data["max_iterations"])
        if "n_components" in data:
            base.n_components = None if data["n_components"] is None else int(data["n_components"])
        return base


@dataclass
class PipelineConfig:
    width: int = 1024
    height: int = 512
    num_offsets: int = 1
    indirect_condition: Optional[int] = None
    exposure: float = 0.0
    gamma: float = 2.2
    area_lights: AreaLightParams = field(default_factory=AreaLightParams)
    identification: IdentificationParams = field(default_factory=IdentificationParams)
    integration: IntegrationParams = field(default_factory=IntegrationParams)
    optimization: OptimizationParams = field(default_factory=OptimizationParams)

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "num_offsets": self.num_offsets,
            "indirect_condition": self.indirect_condition,
            "exposure": self.exposure,
            "gamma": self.gamma,
            "area_lights": self.area_lights.to_dict(),
            "identification": self.identification.to_dict(),
            "integration": self.integration.to_dict(),
            "optimization": self.optimization.to_dict(),
        }

    def copy(self) -> "PipelineConfig":
        return copy.deepcopy(self)

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("width and height must be > 0")
        if self.num_offsets <= 0:
            raise ValueError("num_offsets must be >= 1")
        if self.gamma <= 0.0:
            raise ValueError("gamma must be positive")
        if self.area_lights.spacing <= 0:
            raise ValueError("area_lights.spacing must be > 0")
        ident = self.identification
        if ident.num_samples <= 0:
            raise ValueError("identification.num_samples must be > 0")
        if ident.tolerance < 0.0:
            raise ValueError("identification.tolerance must be non-negative")
        if ident.clusters <= 0 or any(v <= 0 for v in ident.clusters_per_condition.values()):
            raise ValueError("identification cluster counts must be > 0")
        if ident.attempts <= 0:
            raise ValueError("identification.attempts must be > 0")
        if ident.max_iterations <= 0:
            raise ValueError("identification.max_iterations must be > 0")
        if ident.epsilon < 0.0:
            raise ValueError("identification.epsilon must be non-negative")
        integ = self.integration
        if integ.light_type == "gaussian":
            variances = [integ.variance, *integ.variance_per_condition.values()]
            if any(vx <= 0.0 or vy <= 0.0 for vx, vy in variances):
                raise ValueError("integration.variance entries must be positive for gaussian lights")
        if not (0.0 < integ.mask_threshold <= 1.0):
            raise ValueError("integration.mask_threshold must be within (0, 1]")
        opt = self.optimization
        if opt.lower > opt.upper:
            raise ValueError(f"optimization bounds are inverted: [{opt.lower}, {opt.upper}]")
        if opt.history <= 0:
            raise ValueError("optimization.history must be > 0")
        if opt.tolerance < 0.0:
            raise ValueError("optimization.tolerance must be non-negative")
        if opt.max_iterations <= 0:
            raise ValueError("optimization.max_iterations must be > 0")
        if opt.n_components is not None and opt.n_components <= 0:
            raise ValueError("optimization.n_components must be > 0 when set")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default: Optional["PipelineConfig"] = None) -> "PipelineConfig":
        base = copy.deepcopy(default) if default is not None else cls()
        if "width" in data:
            base.width = int(data["width"])
        if "height" in data:
            base.height = int(data["height"])
        if "num_offsets" in data:
            base.num_offsets = int(data["num_offsets"])
        if "indirect_condition" in data:
            value = data["indirect_condition"]
            base.indirect_condition = None if value is None else int(value)
        if "exposure" in data:
            base.exposure = float(data["exposure"])
        if "gamma" in data:
            base.gamma = float(data["gamma"])
        if "area_lights" in data:
            base.area_lights = AreaLightParams.from_mapping(data["area_lights"], base.area_lights)
        if "identification" in data:
            base.identification = IdentificationParams.from_mapping(data["identification"], base.identification)
        if "integration" in data:
            base.integration = IntegrationParams.from_mapping(data["integration"], base.integration)
        if "optimization" in data:
            base.optimization = OptimizationParams.from_mapping(data["optimization"], base.optimization)
        return base


def _load_from_path(path: Path) -> Mapping[str, Any]:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in {".json", ""}:
        return json.loads(text)
    raise ValueError(f"Unsupported pipeline config file format: {path}")


def _build_override_mapping(overrides: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key in {"width", "height", "num_offsets", "indirect_condition", "exposure", "gamma"}:
            out[key] = value
        elif key == "spacing":
            out.setdefault("area_lights", {})["spacing"] = value
        elif key in {"strategy", "identification_strategy"}:
            out.setdefault("identification", {})["strategy"] = value
        elif key in {"num_samples", "samples"}:
            out.setdefault("identification", {})["num_samples"] = value
        elif key in {"clusters", "clusters_per_condition", "attempts", "seed", "epsilon"}:
            out.setdefault("identification", {})[key] = value
        elif key in {"sampling_tolerance", "cdf_tolerance"}:
            out.setdefault("identification", {})["tolerance"] = value
        elif key in {"light_type", "variance", "mask_threshold"}:
            out.setdefault("integration", {})[key] = value
        elif key in {"mode", "optimization", "optimization_mode"}:
            out.setdefault("optimization", {})["mode"] = value
        elif key in {"bounds", "history", "n_components"}:
            out.setdefault("optimization", {})[key] = value
        elif key in {"optimization_tolerance", "ftol"}:
            out.setdefault("optimization", {})["tolerance"] = value
        elif key in {"max_iterations", "optimization_max_iterations"}:
            out.setdefault("optimization", {})["max_iterations"] = value
        else:
            raise ValueError(f"Unknown pipeline override: {key!r}")
    return out


def load_pipeline_config(config: ConfigSource = None, overrides: Optional[Mapping[str, Any]] = None) -> PipelineConfig:
    if isinstance(config, PipelineConfig):
        cfg = config.copy()
    elif isinstance(config, Mapping):
        cfg = PipelineConfig.from_mapping(config)
    elif isinstance(config, (str, Path)):
        cfg = PipelineConfig.from_mapping(_load_from_path(Path(config)))
    elif config is None:
        cfg = PipelineConfig()
    else:
        raise TypeError("config must be PipelineConfig, mapping, path, or None")

    if overrides:
        merged = _build_override_mapping(overrides)
        if merged:
            cfg = PipelineConfig.from_mapping(merged, cfg)
    cfg.validate()
    return cfg


__all__ = [
    "AreaLightParams",
    "IdentificationParams",
    "IntegrationParams",
    "OptimizationParams",
    "PipelineConfig",
    "load_pipeline_config",
]
