from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.interpolate import BSpline

from .config import SplineConfig
from .errors import FitFailure


def _solve(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.solve(A, B)
    except np.linalg.LinAlgError:
        return np.linalg.pinv(A) @ B


def _second_difference_penalty(n_coef: int) -> np.ndarray:
    D = np.zeros((n_coef - 2, n_coef), dtype=float)
    for i in range(n_coef - 2):
        D[i, i : i + 3] = (1.0, -2.0, 1.0)
    return D.T @ D


def _build_knots(ages: np.ndarray, basis_dim: int, degree: int) -> np.ndarray:
    uniq = np.unique(ages)
    lo, hi = float(uniq[0]), float(uniq[-1])
    n_inner = basis_dim - degree - 1
    inner = np.quantile(uniq, np.linspace(0.0, 1.0, n_inner + 2)[1:-1]) if n_inner > 0 else np.empty(0)
    if inner.size and (np.any(np.diff(inner) <= 0) or inner[0] <= lo or inner[-1] >= hi):
        inner = np.linspace(lo, hi, n_inner + 2)[1:-1]
    return np.concatenate([np.full(degree + 1, lo), inner, np.full(degree + 1, hi)])


def _basis(knots: np.ndarray, degree: int, ages: np.ndarray) -> np.ndarray:
    """B-spline design matrix, continued linearly past the boundary knots."""
    n_coef = len(knots) - degree - 1
    spline = BSpline(knots, np.eye(n_coef), degree, extrapolate=True)
    x = np.asarray(ages, dtype=float)
    xc = np.clip(x, knots[0], knots[-1])
    X = spline(xc)
    outside = x != xc
    if outside.any():
        X[outside] += spline.derivative()(xc[outside]) * (x[outside] - xc[outside])[:, None]
    return X


@dataclass(frozen=True)
class AgeCurve:
    """Penalized regression spline of the (transformed) response on age."""

    knots: np.ndarray
    degree: int
    coef: np.ndarray
    cov: np.ndarray
    lam: float
    edf: float
    scale: float
    complexity: int
    age_min: float
    age_max: float
    n_obs: int

    @property
    def basis_dim(self) -> int:
        return int(self.coef.size)

    def predict(self, ages) -> tuple[np.ndarray, np.ndarray]:
        """Point estimate and standard error on the fitting scale, at any age."""
        X = _basis(self.knots, self.degree, np.atleast_1d(np.asarray(ages, dtype=float)))
        fit = X @ self.coef
        var = np.einsum("ij,jk,ik->i", X, self.cov, X)
        return fit, np.sqrt(np.clip(var, 0.0, None))


def fit_age_curve(
    ages,
    response,
    weights,
    complexity: int,
    cfg: SplineConfig | None = None,
) -> AgeCurve:
    """Fit a weighted P-spline with basis dimension bounded by ``complexity``.

    The smoothing penalty is picked by weighted GCV from a fixed grid; the
    first (smallest) penalty wins ties. Raises FitFailure when no usable fit
    exists.
    """
    cfg = cfg or SplineConfig()
    x = np.asarray(ages, dtype=float)
    y = np.asarray(response, dtype=float)
    w = np.asarray(weights, dtype=float)
    if not (x.shape == y.shape == w.shape) or x.ndim != 1:
        raise FitFailure("ages, response and weights must be 1d arrays of equal length")
    if not (np.isfinite(x).all() and np.isfinite(y).all()):
        raise FitFailure("non-finite age or response values")
    if not (np.isfinite(w).all() and (w > 0).all()):
        raise FitFailure("weights must be finite and strictly positive")

    n = x.size
    basis_dim = min(int(complexity), int(np.unique(x).size))
    if basis_dim < 3:
        raise FitFailure(f"basis dimension {basis_dim} is too small (complexity={complexity}, n_distinct={np.unique(x).size})")
    degree = min(int(cfg.degree), basis_dim - 1)

    knots = _build_knots(x, basis_dim, degree)
    X = _basis(knots, degree, x)
    P = _second_difference_penalty(basis_dim)

    # Common weight scale does not change the solution; keep the system well conditioned.
    w = w / np.mean(w)
    XtW = X.T * w
    XtWX = XtW @ X
    XtWy = XtW @ y

    best = None
    for lam in np.logspace(np.log10(cfg.lambda_min), np.log10(cfg.lambda_max), int(cfg.n_lambda)):
        A_inv = _solve(XtWX + lam * P, np.eye(basis_dim))
        beta = A_inv @ XtWy
        edf = float(np.trace(A_inv @ XtWX))
        dof = n - edf
        if not np.isfinite(beta).all() or dof <= 1e-8:
            continue
        rss = float(np.sum(w * (y - X @ beta) ** 2))
        gcv = n * rss / dof**2
        if best is None or gcv < best[0]:
            best = (gcv, float(lam), beta, A_inv, edf, rss / dof)

    if best is None:
        raise FitFailure("no penalty on the grid produced a finite fit")
    _, lam, beta, A_inv, edf, scale = best
    cov = scale * A_inv
    if not (np.isfinite(cov).all() and np.isfinite(scale)):
        raise FitFailure("non-finite coefficient covariance")

    for arr in (beta, cov):
        arr.setflags(write=False)
    return AgeCurve(
        knots=knots,
        degree=degree,
        coef=beta,
        cov=cov,
        lam=lam,
        edf=edf,
        scale=float(scale),
        complexity=int(complexity),
        age_min=float(x.min()),
        age_max=float(x.max()),
        n_obs=int(n),
    )
