# python/lightbasis/__init__.py
# Public API for lighting-basis construction, integration and refinement
# Exists to expose the basis, partition, integrator, identifier and optimiser in one namespace
# RELEVANT FILES: python/lightbasis/pipeline.py, python/lightbasis/config.py, tests/test_pipeline.py
from .basis import LightingBasis, directions_to_pixels, rectangle_center, reorient_rectangle
from .conditions import ConditionMapping
from .config import (
    AreaLightParams,
    IdentificationParams,
    IntegrationParams,
    OptimizationParams,
    PipelineConfig,
    load_pipeline_config,
)
from .identify import (
    IdentificationResult,
    apply_identification,
    distribution_2d,
    identify_lights,
    inverse_cdf_samples,
    median_energy_point,
)
from .integrator import (
    cell_intensity,
    cell_weights,
    column_offset,
    condition_weights,
    mask_weights,
    normalize_weights_rgb,
    rotate_latlong_map,
    selected_pixels,
    solid_angle_weights,
)
from .optimize import (
    BasisOptimizer,
    OptimizationContext,
    OptimizationResult,
    PcaSubspace,
    compose_residual_mask,
)
from .partition import SpatialPartition
from .pipeline import PipelineResult, RelightingPipeline
from .relight import (
    ReflectanceField,
    change_exposure,
    gamma_correct,
    linear_combination,
    ray_trace_background,
    remove_gamma,
)

__version__ = "0.1.0"

__all__ = [
    "LightingBasis",
    "directions_to_pixels",
    "rectangle_center",
    "reorient_rectangle",
    "ConditionMapping",
    "AreaLightParams",
    "IdentificationParams",
    "IntegrationParams",
    "OptimizationParams",
    "PipelineConfig",
    "load_pipeline_config",
    "IdentificationResult",
    "apply_identification",
    "distribution_2d",
    "identify_lights",
    "inverse_cdf_samples",
    "median_energy_point",
    "cell_intensity",
    "cell_weights",
    "column_offset",
    "condition_weights",
    "mask_weights",
    "normalize_weights_rgb",
    "rotate_latlong_map",
    "selected_pixels",
    "solid_angle_weights",
    "BasisOptimizer",
    "OptimizationContext",
    "OptimizationResult",
    "PcaSubspace",
    "compose_residual_mask",
    "SpatialPartition",
    "PipelineResult",
    "RelightingPipeline",
    "ReflectanceField",
    "change_exposure",
    "gamma_correct",
    "linear_combination",
    "ray_trace_background",
    "remove_gamma",
    "__version__",
]
