# python/lightbasis/pipeline.py
# Batch driver: identify lights, integrate, optimise and relight over longitude offsets
# Exists to run the whole basis pipeline from one PipelineConfig
# RELEVANT FILES: python/lightbasis/config.py, python/lightbasis/identify.py, python/lightbasis/optimize.py, tests/test_pipeline.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from ._validate import is_missing, rgb_image
from .config import ConfigSource, PipelineConfig, load_pipeline_config
from .identify import IdentificationResult, apply_identification, identify_lights
from .integrator import condition_weights, mask_weights, normalize_weights_rgb, selected_pixels
from .optimize import BasisOptimizer, OptimizationContext, OptimizationResult, compose_residual_mask
from .partition import SpatialPartition
from .relight import ReflectanceField, change_exposure, linear_combination, ray_trace_background

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    ok: bool
    offsets: List[float] = field(default_factory=list)
    raw_weights: List[np.ndarray] = field(default_factory=list)
    weights: List[np.ndarray] = field(default_factory=list)
    images: List[Optional[np.ndarray]] = field(default_factory=list)
    optimization: List[OptimizationResult] = field(default_factory=list)
    identification: Optional[IdentificationResult] = None


class RelightingPipeline:
    """
    Runs identification, integration, optimisation and recombination.

    The identification step runs once; integration, optimisation and
    recombination repeat for ``num_offsets`` longitude offsets
    ``2 * pi * l / num_offsets``. With the "manual" strategy the caller fills
    ``pipeline.partition`` beforehand.
    """

    def __init__(self, config: ConfigSource = None, partition: Optional[SpatialPartition] = None, **overrides):
        self.config: PipelineConfig = load_pipeline_config(config, overrides)
        self.partition = partition if partition is not None else SpatialPartition(
            width=self.config.width, height=self.config.height
        )
        self.optimizer = BasisOptimizer(self.config.optimization)

    def _selections(self, masks: Sequence[Optional[np.ndarray]], residual_mask: Optional[np.ndarray]):
        """Masks used for mask-mode integration, with the indirect condition on its residual region."""
        indirect = self.config.indirect_condition
        threshold = self.config.integration.mask_threshold
        if indirect is None or not 0 <= indirect < len(masks):
            return list(masks)
        out: List[Optional[np.ndarray]] = []
        for k, mask in enumerate(masks):
            out.append(None if is_missing(mask) else selected_pixels(mask, threshold))
        if residual_mask is not None:
            out[indirect] = selected_pixels(residual_mask, threshold)
        elif out[indirect] is not None:
            direct = [m for k, m in enumerate(out) if k != indirect and m is not None]
            out[indirect] = compose_residual_mask(direct, out[indirect])
        return out

    def identify(self, conditions=None, masks=None, directions=None) -> Optional[IdentificationResult]:
        cfg = self.config
        strategy = cfg.identification.strategy
        self.partition.set_domain_size(cfg.width, cfg.height)
        if strategy == "manual":
            basis = self.partition.basis
            if basis.num_area_lights and not basis.area_lights_sampled:
                basis.expand_area_lights(cfg.area_lights.spacing)
            if self.partition.num_cells == 0:
                logger.warning("Manual strategy selected but the basis has no lights")
            return None
        result = identify_lights(
            strategy,
            conditions=conditions,
            masks=masks,
            directions=directions,
            params=cfg.identification,
            width=cfg.width,
            height=cfg.height,
        )
        if not result.uses_masks:
            apply_identification(self.partition, result)
        return result

    def run(
        self,
        env_map: Optional[np.ndarray],
        conditions: Optional[Sequence[Optional[np.ndarray]]] = None,
        masks: Optional[Sequence[Optional[np.ndarray]]] = None,
        directions=None,
        field: Optional[ReflectanceField] = None,
        residual_mask: Optional[np.ndarray] = None,
    ) -> PipelineResult:
        """
        Process one illumination map.

        Args:
            env_map: (H, W, 3) equirectangular map; when absent the result has ``ok=False``
            conditions: Per-condition lat-long images for image-based identification
            masks: Per-condition masks for mask mode and for the optimiser
            directions: (N, 3) light directions for the "directions" strategy
            field: Reflectance field to recombine; no images are produced without one
            residual_mask: Explicit region of the indirect-light condition

        Returns:
            PipelineResult with one entry per offset
        """
        if is_missing(env_map):
            logger.warning("Illumination map is missing; pipeline not run")
            return PipelineResult(ok=False)
        env = rgb_image(env_map, "env_map")
        cfg = self.config
        if (env.shape[1], env.shape[0]) != (cfg.width, cfg.height):
            logger.info(f"Map is {env.shape[1]}x{env.shape[0]}, overriding configured {cfg.width}x{cfg.height}")
            cfg.width, cfg.height = env.shape[1], env.shape[0]

        identification = self.identify(conditions=conditions, masks=masks, directions=directions)
        mask_mode = identification is not None and identification.uses_masks
        selections = None
        if masks is not None:
            selections = self._selections(masks, residual_mask)

        result = PipelineResult(ok=True, identification=identification)
        self.optimizer.reset()
        integ = cfg.integration
        for l in range(cfg.num_offsets):
            offset = 2.0 * np.pi * l / cfg.num_offsets
            if mask_mode:
                weights = mask_weights(env, selections, offset, integ.mask_threshold)
            else:
                weights = condition_weights(
                    env,
                    self.partition,
                    offset=offset,
                    light_type=integ.light_type,
                    variance=integ.variance,
                    variance_per_condition=integ.variance_per_condition,
                )
            result.raw_weights.append(weights.copy())

            if cfg.optimization.enabled:
                if masks is None or len(masks) != len(weights):
                    logger.warning("Optimisation needs one mask per lighting condition; skipped")
                else:
                    context = OptimizationContext.build(
                        env,
                        masks,
                        weights,
                        offset=offset,
                        threshold=integ.mask_threshold,
                        indirect_condition=cfg.indirect_condition,
                        residual_mask=residual_mask,
                    )
                    opt = self.optimizer.optimize(context)
                    result.optimization.append(opt)
                    weights = opt.weights

            weights = normalize_weights_rgb(weights)
            result.offsets.append(offset)
            result.weights.append(weights)
            if field is not None:
                result.images.append(self._relight(field, weights, env, offset))
            logger.debug(f"Offset {l}/{cfg.num_offsets} ({offset:.4f} rad) done")

        logger.info(f"Pipeline finished: {len(result.offsets)} offsets, {len(result.weights[0]) if result.weights else 0} conditions")
        return result

    def _relight(self, field: ReflectanceField, weights: np.ndarray, env: np.ndarray, offset: float) -> Optional[np.ndarray]:
        image = linear_combination(field, weights)
        if image is None:
            return None
        image = change_exposure(image, self.config.exposure)
        if field.object_mask is not None:
            # the camera looks down -z, half a turn away from the map's centre column
            image = ray_trace_background(image, field.object_mask, env, offset + np.pi, gamma=self.config.gamma)
        return image
