# python/lightbasis/optimize.py
# Box-constrained refinement of per-condition weights against a target map
# Exists to fit one multiplier per lighting condition, in pixel space or a PCA subspace
# RELEVANT FILES: python/lightbasis/integrator.py, python/lightbasis/pipeline.py, tests/test_optimize.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize
from sklearn.decomposition import PCA

from ._validate import is_missing, rgb_image
from .config import OptimizationParams
from .integrator import DEFAULT_MASK_THRESHOLD, rotate_latlong_map, selected_pixels, solid_angle_weights

logger = logging.getLogger(__name__)


def compose_residual_mask(direct: Sequence[np.ndarray], indirect: np.ndarray) -> np.ndarray:
    """
    Selection for the indirect-light condition.

    A pixel belongs to the residual region when the indirect-light mask selects
    it and no direct-light mask does.
    """
    residual = np.asarray(indirect, dtype=bool).copy()
    for sel in direct:
        residual &= ~np.asarray(sel, dtype=bool)
    return residual


def target_intensity(env_map: np.ndarray, offset: float = 0.0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Solid-angle weighted grayscale intensity of the shifted map.

    Returns:
        (intensity, valid): (H, W) intensity with invalid pixels set to 0 and
        the (H, W) mask of pixels that are not NaN in all three channels
    """
    rgb = rotate_latlong_map(rgb_image(env_map, "env_map"), offset)
    valid = ~np.all(np.isnan(rgb), axis=2)
    gray = np.nan_to_num(rgb, nan=0.0, posinf=0.0, neginf=0.0).mean(axis=2)
    return gray * solid_angle_weights(rgb.shape[0])[:, None] * valid, valid


@dataclass
class OptimizationContext:
    """Everything an objective evaluation reads: target map, selections, initial weights."""

    target: np.ndarray
    valid: np.ndarray
    selections: np.ndarray
    weights: np.ndarray
    offset: float = 0.0

    @classmethod
    def build(
        cls,
        env_map: np.ndarray,
        masks: Sequence[Optional[np.ndarray]],
        weights: np.ndarray,
        offset: float = 0.0,
        threshold: float = DEFAULT_MASK_THRESHOLD,
        indirect_condition: Optional[int] = None,
        residual_mask: Optional[np.ndarray] = None,
    ) -> "OptimizationContext":
        """
        Prepare the optimisation inputs for one longitude offset.

        ``masks[k]`` restricts the comparison for condition ``k``. The
        indirect-light condition compares over the residual region: the given
        ``residual_mask`` when supplied, otherwise its own mask minus every
        direct-light mask. Missing masks select nothing.
        """
        target, valid = target_intensity(env_map, offset)
        w = np.asarray(weights, dtype=np.float64)
        if w.ndim != 2 or w.shape[1] != 3:
            raise ValueError(f"weights must have shape (K, 3), got {w.shape}")
        if len(masks) != len(w):
            raise ValueError(f"expected {len(w)} masks, got {len(masks)}")
        h, wd = target.shape
        selections = np.zeros((len(w), h, wd), dtype=bool)
        for k, mask in enumerate(masks):
            if is_missing(mask):
                logger.warning(f"Mask for lighting condition {k} is missing; it is left out of the fit")
                continue
            sel = selected_pixels(mask, threshold)
            if sel.shape != (h, wd):
                raise ValueError(f"mask {k} is {sel.shape[0]}x{sel.shape[1]}, map is {h}x{wd}")
            selections[k] = sel
        if indirect_condition is not None and 0 <= indirect_condition < len(w):
            if residual_mask is not None:
                selections[indirect_condition] = selected_pixels(residual_mask, threshold)
            else:
                direct = [selections[k] for k in range(len(w)) if k != indirect_condition]
                selections[indirect_condition] = compose_residual_mask(direct, selections[indirect_condition])
        return cls(target=target, valid=valid, selections=selections, weights=w, offset=float(offset))

    @property
    def num_conditions(self) -> int:
        return len(self.weights)

    @property
    def intensities(self) -> np.ndarray:
        """Mean of each condition's RGB weight, shape (K,)."""
        return self.weights.mean(axis=1)

    def design_matrix(self) -> np.ndarray:
        """(H * W, K) matrix whose column ``k`` holds condition ``k``'s intensity over its selection."""
        sel = self.selections.reshape(self.num_conditions, -1).T
        return sel * self.intensities[None, :]


class PixelObjective:
    """Root of the summed squared per-pixel error, evaluated over every selected pixel."""

    def __init__(self, context: OptimizationContext):
        self.intensities = context.intensities
        # selected and valid pixel values, one array per condition
        self.pixels: List[np.ndarray] = [
            context.target[sel & context.valid] for sel in context.selections
        ]

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        grad = np.zeros_like(x, dtype=np.float64)
        total = 0.0
        for k, values in enumerate(self.pixels):
            if values.size == 0:
                continue
            c = self.intensities[k]
            residual = x[k] * c - values
            total += float(residual @ residual)
            grad[k] = 2.0 * c * float(residual.sum())
        f = float(np.sqrt(total))
        if f > 0.0:
            grad /= 2.0 * f
        return f, grad


class PcaSubspace:
    """
    Principal subspace of a design matrix whose columns are the samples.

    The columns (one per condition) are centred on their mean and the leading
    ``n_components`` directions are kept.
    """

    def __init__(self, design: np.ndarray, n_components: Optional[int] = None):
        design = np.asarray(design, dtype=np.float64)
        if design.ndim != 2:
            raise ValueError(f"design must be 2-D, got shape {design.shape}")
        limit = min(design.shape)
        k = limit if n_components is None else min(int(n_components), limit)
        self.pca = PCA(n_components=k, svd_solver="full").fit(design.T)
        logger.debug(
            f"PCA kept {k} of {design.shape[1]} components, "
            f"{float(np.sum(self.pca.explained_variance_ratio_)):.6f} of the variance"
        )

    @property
    def n_components(self) -> int:
        return int(self.pca.n_components_)

    @property
    def components(self) -> np.ndarray:
        return self.pca.components_

    @property
    def explained_variance_ratio(self) -> np.ndarray:
        return self.pca.explained_variance_ratio_

    def project(self, vectors: np.ndarray) -> np.ndarray:
        """Coordinates of column vectors (P,) or (P, M) in the subspace."""
        v = np.asarray(vectors, dtype=np.float64)
        if v.ndim == 1:
            return self.pca.transform(v[None, :])[0]
        return self.pca.transform(v.T).T

    def reconstruct(self, coords: np.ndarray) -> np.ndarray:
        c = np.asarray(coords, dtype=np.float64)
        if c.ndim == 1:
            return self.pca.inverse_transform(c[None, :])[0]
        return self.pca.inverse_transform(c.T).T

    def reconstruction_error(self, vectors: np.ndarray) -> float:
        """Frobenius norm of ``vectors - reconstruct(project(vectors))``."""
        v = np.asarray(vectors, dtype=np.float64)
        return float(np.linalg.norm(v - self.reconstruct(self.project(v))))


class SubspaceObjective:
    """
    Root of the squared distance between projected reconstruction and projected target.

    The reconstruction ``D @ x`` is linear in the multipliers and the subspace
    mean cancels, so the objective reduces to ``|| A @ x - b ||`` with
    ``A = components @ D`` and ``b = components @ target``.
    """

    def __init__(self, context: OptimizationContext, n_components: Optional[int] = None):
        design = context.design_matrix()
        self.subspace = PcaSubspace(design, n_components)
        comps = self.subspace.components
        self.A = comps @ design
        self.b = comps @ context.target.ravel()

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        residual = self.A @ x - self.b
        f = float(np.sqrt(residual @ residual))
        if f == 0.0:
            return 0.0, np.zeros_like(x, dtype=np.float64)
        return f, (self.A.T @ residual) / f


@dataclass
class OptimizationResult:
    multipliers: np.ndarray
    weights: np.ndarray
    objective: float
    converged: bool
    iterations: int
    mode: str
    message: str = ""


@dataclass
class BasisOptimizer:
    """
    Fits one multiplier per lighting condition with L-BFGS-B inside ``[lower, upper]``.

    In "original" mode the previous solution is kept as the starting point of
    the next call, which suits successive longitude offsets of the same map.
    "pca" mode restarts from all ones on every call because its subspace
    depends on the offset.
    """

    params: OptimizationParams = field(default_factory=OptimizationParams)
    start: Optional[np.ndarray] = None

    def reset(self) -> None:
        self.start = None

    def _starting_point(self, k: int) -> np.ndarray:
        if self.params.mode == "original" and self.start is not None and len(self.start) == k:
            return np.clip(self.start, self.params.lower, self.params.upper)
        return np.ones(k, dtype=np.float64)

    def objective(self, context: OptimizationContext):
        if self.params.mode != "pca":
            return PixelObjective(context)
        if context.num_conditions < 2:
            logger.warning(
                f"PCA space needs at least two lighting conditions, got {context.num_conditions}; optimising in original space"
            )
            return PixelObjective(context)
        return SubspaceObjective(context, self.params.n_components)

    def optimize(self, context: OptimizationContext) -> OptimizationResult:
        k = context.num_conditions
        mode = self.params.mode
        if mode == "disabled" or k == 0:
            return OptimizationResult(
                multipliers=np.ones(k), weights=context.weights.copy(), objective=float("nan"),
                converged=True, iterations=0, mode=mode,
            )
        for idx, sel in enumerate(context.selections):
            if not sel.any():
                logger.debug(f"Condition {idx} selects no pixels; its multiplier is unconstrained")

        fun = self.objective(context)
        x0 = self._starting_point(k)
        res = minimize(
            fun,
            x0,
            jac=True,
            method="L-BFGS-B",
            bounds=[(self.params.lower, self.params.upper)] * k,
            options={
                "maxcor": self.params.history,
                "ftol": self.params.tolerance,
                "maxiter": self.params.max_iterations,
            },
        )
        x = np.clip(np.asarray(res.x, dtype=np.float64), self.params.lower, self.params.upper)
        if not res.success:
            logger.warning(f"Optimisation ({mode}) stopped before converging: {res.message}")
        else:
            logger.info(f"Optimisation ({mode}) converged in {res.nit} iterations, objective {float(res.fun):.6g}")
        if mode == "original":
            self.start = x.copy()
        return OptimizationResult(
            multipliers=x,
            weights=context.weights * x[:, None],
            objective=float(res.fun),
            converged=bool(res.success),
            iterations=int(res.nit),
            mode=mode,
            message=str(res.message),
        )
