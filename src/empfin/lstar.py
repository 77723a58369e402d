"""
Logistic smooth transition regression (LSTAR) estimated by non-linear LS.

    y = (1-G)*x0'b1 + G*x0'b2 + w'd + e,    G = 1/(1+exp(-g*(z-c)))

For given (g, c) the model is linear in (b1, b2, d), so the LS problem is
profiled: the coefficients come from OLS and only (g, c) are searched over,
starting from the best point of a grid. Standard errors of all parameters
are from the GMM sandwich D^-1 S D^-1' / T of the LS moment conditions, with
S estimated by Newey-West.

Notes:
    z is not standardised here.
    When only one of (g, c) is estimated, the range of the corresponding grid
    is the bracket of the bounded scalar search.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy.optimize import minimize, minimize_scalar
from scipy.special import expit

from .util import excise, newey_west, numerical_jacobian, ols

logger = logging.getLogger(__name__)

LOSS_OFFSET = 1.0
LSTAR_XTOL = 1e-6
LSTAR_FTOL = 1e-10
LSTAR_MAXITER = 10_000


class EstimationType(enum.IntEnum):
    """Which of the transition parameters (g, c) are estimated."""

    BOTH = 1
    C_ONLY = 2
    G_ONLY = 3
    NEITHER = 4

    @property
    def n_transition(self) -> int:
        return {1: 2, 2: 1, 3: 1, 4: 0}[int(self)]


@dataclass
class LStarDetails:
    theta: np.ndarray
    std_theta: np.ndarray
    cov_theta: np.ndarray
    r_squared: float
    nobs: int
    gc_hat: np.ndarray
    G: np.ndarray
    b: np.ndarray
    std_b_ols: np.ndarray


@dataclass
class LStarResult:
    """
    Output of `estimate_lstar`.

    theta is [g, c, b1, b2, d], [c, b1, b2, d], [g, b1, b2, d] or [b1, b2, d]
    depending on est_type; b1 are the coefficients on x0 for z = -Inf and b2
    those for z = Inf. slope_diff holds b2 - b1 for each column of x0 and its
    t-statistic.
    """

    theta: np.ndarray
    std_theta: np.ndarray
    cov_theta: np.ndarray
    slope_diff: pd.DataFrame
    r_squared: float
    nobs: int
    gc_hat: np.ndarray
    G: np.ndarray
    sse_grid: np.ndarray
    sse: float
    b: np.ndarray
    std_b_ols: np.ndarray
    est_type: EstimationType


def _gc_keep(gc_keep: Sequence[float] | None) -> np.ndarray:
    if gc_keep is None:
        return np.array([np.nan, np.nan])
    gc = np.asarray(gc_keep, dtype=float).reshape(-1)
    if gc.size == 0:
        return np.array([np.nan, np.nan])
    if gc.size != 2:
        raise ValueError(f"invalid case: gc_keep must be empty or [g, c], got {gc_keep!r}")
    return gc


def lstar_parameters(
    gc_keep: Sequence[float] | None,
    theta: Sequence[float],
    gc_start: Sequence[float] = (np.nan, np.nan),
) -> tuple[float, float, np.ndarray, np.ndarray, EstimationType]:
    """
    Split theta into (g, c, b) given which of (g, c) are held fixed.

    gc_keep = None or [nan, nan] estimates both, [1.5, nan] only c,
    [nan, -0.75] only g, and [1.5, -0.75] neither. NaN marks a parameter
    to estimate.

    Returns
    -------
    tuple
        (g, c, b, par0, est_type) where par0 holds the elements of gc_start
        that are estimated.
    """
    gc = _gc_keep(gc_keep)
    theta = np.asarray(theta, dtype=float).reshape(-1)
    gc_start = np.asarray(gc_start, dtype=float).reshape(-1)
    free = np.isnan(gc)

    if free.all():
        g, c, b = abs(theta[0]), theta[1], theta[2:]
        par0 = gc_start[:2].copy()
        est_type = EstimationType.BOTH
    elif not free[0] and free[1]:
        g, c, b = gc[0], theta[0], theta[1:]
        par0 = gc_start[1:2].copy()
        est_type = EstimationType.C_ONLY
    elif free[0] and not free[1]:
        g, c, b = abs(theta[0]), gc[1], theta[1:]
        par0 = gc_start[0:1].copy()
        est_type = EstimationType.G_ONLY
    else:
        g, c, b = gc[0], gc[1], theta.copy()
        par0 = np.array([], dtype=float)
        est_type = EstimationType.NEITHER

    return float(g), float(c), b, par0, est_type


def compose_theta(g: float, c: float, b: Sequence[float], est_type: EstimationType) -> np.ndarray:
    """
    Inverse of `lstar_parameters`: stack the estimated parts of (g, c) and b.
    """
    b = np.asarray(b, dtype=float).reshape(-1)
    head = {
        EstimationType.BOTH: [g, c],
        EstimationType.C_ONLY: [c],
        EstimationType.G_ONLY: [g],
        EstimationType.NEITHER: [],
    }[EstimationType(est_type)]
    return np.concatenate([np.asarray(head, dtype=float), b])


def logistic_weight(z: np.ndarray, g: float, c: float) -> np.ndarray:
    """G(z) = 1/(1+exp(-g*(z-c)))."""
    return expit(g * (np.asarray(z, dtype=float) - c))


def _as_inputs(y, x0, w, z) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    y = np.asarray(y, dtype=float).reshape(-1)
    x0 = np.asarray(x0, dtype=float)
    if x0.ndim == 1:
        x0 = x0.reshape(-1, 1)
    if w is None:
        w = np.zeros((y.size, 0))
    w = np.asarray(w, dtype=float)
    if w.ndim == 1:
        w = w.reshape(-1, 1)
    z = np.asarray(z, dtype=float).reshape(-1)
    if not (x0.shape[0] == w.shape[0] == z.size == y.size):
        raise ValueError("y, x0, w and z must have the same number of rows")
    return y, x0, w, z


def _regressors(x0: np.ndarray, w: np.ndarray, G: np.ndarray) -> np.ndarray:
    G = G.reshape(-1, 1)
    return np.hstack([x0 * (1.0 - G), x0 * G, w])


def moment_conditions(
    theta: Sequence[float],
    y: np.ndarray,
    x0: np.ndarray,
    w: np.ndarray | None,
    z: np.ndarray,
    gc_keep: Sequence[float] | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    LS moment conditions of the LSTAR model.

    Returns
    -------
    tuple of np.ndarray
        (mbar, m): m is T x p with one column per element of theta, the
        residual times the derivative of the fitted value; mbar is its mean.
    """
    y, x0, w, z = _as_inputs(y, x0, w, z)
    k, kw = x0.shape[1], w.shape[1]
    g, c, b, _, est_type = lstar_parameters(gc_keep, theta)
    if b.size != 2 * k + kw:
        raise ValueError(f"theta has {np.size(theta)} elements, expected {est_type.n_transition + 2 * k + kw}")

    G = logistic_weight(z, g, c)
    x = _regressors(x0, w, G)
    res = y - x @ b

    b1_b2x0 = x0 @ (b[k : 2 * k] - b[:k])
    dF_dg = (1.0 - G) * G * (z - c) * b1_b2x0
    dF_dc = (1.0 - G) * G * (-g) * b1_b2x0

    mg = (res * dF_dg).reshape(-1, 1)
    mc = (res * dF_dc).reshape(-1, 1)
    mb = res.reshape(-1, 1) * x

    blocks = {
        EstimationType.BOTH: [mg, mc, mb],
        EstimationType.C_ONLY: [mc, mb],
        EstimationType.G_ONLY: [mg, mb],
        EstimationType.NEITHER: [mb],
    }[est_type]
    m = -np.hstack(blocks)
    return m.mean(axis=0), m


def lstar_loss(
    par: Sequence[float],
    y: np.ndarray,
    x0: np.ndarray,
    w: np.ndarray | None,
    z: np.ndarray,
    gc_keep: Sequence[float] | None = None,
    details: bool = False,
    nw_lags: int = 0,
) -> tuple[float, LStarDetails | None]:
    """
    Sum of squared residuals for given transition parameters, b by OLS.

    Parameters
    ----------
    par : array-like
        The estimated elements of (g, c), see `lstar_parameters`.
    details : bool
        If True, also compute the sandwich covariance of all parameters.
    nw_lags : int
        Newey-West bandwidth used for the covariance of the moment conditions.
    """
    y, x0, w, z = _as_inputs(y, x0, w, z)
    par = np.atleast_1d(np.asarray(par, dtype=float))
    g, c, _, _, est_type = lstar_parameters(gc_keep, np.append(par, np.nan))

    G = logistic_weight(z, g, c)
    fit = ols(y, _regressors(x0, w, G))
    sse = float(np.sum(fit.residuals**2))
    if not details:
        return sse, None

    theta = compose_theta(g, c, fit.coefficients, est_type)
    _, m = moment_conditions(theta, y, x0, w, z, gc_keep)
    S0 = newey_west(m, nw_lags)
    D0 = numerical_jacobian(lambda p: moment_conditions(p, y, x0, w, z, gc_keep)[0], theta)
    D0_inv = np.linalg.inv(D0)
    cov_theta = D0_inv @ S0 @ D0_inv.T / y.size

    return sse, LStarDetails(
        theta=theta,
        std_theta=np.sqrt(np.diag(cov_theta)),
        cov_theta=cov_theta,
        r_squared=fit.r_squared,
        nobs=y.size,
        gc_hat=np.array([g, c]),
        G=G,
        b=fit.coefficients,
        std_b_ols=np.sqrt(np.diag(fit.cov)),
    )


def grid_argmin(sse_grid: np.ndarray) -> tuple[int, int]:
    """
    Cell (i, j) with the smallest value, first one in row-major order on ties.
    """
    sse_grid = np.asarray(sse_grid, dtype=float)
    i, j = np.unravel_index(np.nanargmin(sse_grid), sse_grid.shape)
    return int(i), int(j)


def sse_over_grid(
    y: np.ndarray,
    x0: np.ndarray,
    w: np.ndarray | None,
    z: np.ndarray,
    g_grid: Sequence[float],
    c_grid: Sequence[float],
) -> np.ndarray:
    """
    Ng x Nc matrix of sums of squared residuals for all (g, c) pairs.
    """
    g_grid = np.asarray(g_grid, dtype=float).reshape(-1)
    c_grid = np.asarray(c_grid, dtype=float).reshape(-1)
    sse_grid = np.full((g_grid.size, c_grid.size), np.nan)
    for i, g in enumerate(g_grid):
        for j, c in enumerate(c_grid):
            sse_grid[i, j], _ = lstar_loss([g, c], y, x0, w, z, gc_keep=[g, c])
    return sse_grid


def estimate_lstar(
    y: Sequence[float],
    x0: np.ndarray,
    w: np.ndarray | None,
    z: Sequence[float],
    g_grid: Sequence[float],
    c_grid: Sequence[float],
    gc_keep: Sequence[float] | None = None,
    nw_lags: int = 0,
    excise_it: bool = False,
) -> LStarResult | None:
    """
    LSTAR estimation of y on (x0, w) with transition variable z.

    Parameters
    ----------
    y : array-like
        T x 1 dependent variable.
    x0 : np.ndarray
        T x k regressors with regime shifts (including any constant).
    w : np.ndarray or None
        T x kw regressors without regime shifts, may be None or T x 0.
    z : array-like
        T x 1 argument of the transition function.
    g_grid, c_grid : array-like
        Values of g and c tried to find starting values.
    gc_keep : array-like, optional
        [g, c]; a NaN element is estimated. Default estimates both.
    nw_lags : int
        Newey-West bandwidth for the covariance matrix.
    excise_it : bool
        If True, drop rows with NaNs in (y, x0, w, z) first.

    Returns
    -------
    LStarResult or None
        None if the optimiser did not converge.
    """
    y, x0, w, z = _as_inputs(y, x0, w, z)
    if excise_it:
        y, x0, w, z = excise(y, x0, w, z)
    g_grid = np.asarray(g_grid, dtype=float).reshape(-1)
    c_grid = np.asarray(c_grid, dtype=float).reshape(-1)
    k = x0.shape[1]

    sse_grid = sse_over_grid(y, x0, w, z, g_grid, c_grid)
    i, j = grid_argmin(sse_grid)
    logger.debug("Grid minimum at g = %s, c = %s (sse = %s)", g_grid[i], c_grid[j], sse_grid[i, j])
    _, _, _, par0, est_type = lstar_parameters(gc_keep, [np.nan] * 3, (g_grid[i], c_grid[j]))

    def objective(par: np.ndarray) -> float:
        return LOSS_OFFSET + lstar_loss(par, y, x0, w, z, gc_keep)[0]

    if est_type is EstimationType.NEITHER:
        par_hat = np.array([], dtype=float)
    else:
        if par0.size == 1:
            grid = g_grid if est_type is EstimationType.G_ONLY else c_grid
            sol = minimize_scalar(
                lambda p: objective(np.array([p])),
                bounds=(grid.min(), grid.max()),
                method="bounded",
                options={"xatol": LSTAR_XTOL, "maxiter": LSTAR_MAXITER},
            )
            par_hat = np.array([sol.x], dtype=float)
        else:
            sol = minimize(
                objective,
                par0,
                method="Nelder-Mead",
                options={"xatol": LSTAR_XTOL, "fatol": LSTAR_FTOL, "maxiter": LSTAR_MAXITER},
            )
            par_hat = np.array(sol.x, dtype=float)
        logger.debug("LSTAR optimiser: %s (%s function evaluations)", sol.message, sol.nfev)
        if not sol.success:
            logger.warning("no convergence in LSTAR estimation: %s", sol.message)
            return None
        if est_type in (EstimationType.BOTH, EstimationType.G_ONLY):
            par_hat[0] = abs(par_hat[0])

    sse, det = lstar_loss(par_hat, y, x0, w, z, gc_keep, details=True, nw_lags=nw_lags)
    theta, cov_theta = det.theta, det.cov_theta

    kgc = est_type.n_transition
    slope_diff = pd.DataFrame(np.nan, index=range(k), columns=["diff", "tstat"])
    for col in range(k):
        R = np.zeros_like(theta)
        R[[kgc + col, kgc + col + k]] = [-1.0, 1.0]
        diff = float(R @ theta)
        slope_diff.loc[col, "diff"] = diff
        slope_diff.loc[col, "tstat"] = diff / np.sqrt(R @ cov_theta @ R)

    return LStarResult(
        theta=theta,
        std_theta=det.std_theta,
        cov_theta=cov_theta,
        slope_diff=slope_diff,
        r_squared=det.r_squared,
        nobs=det.nobs,
        gc_hat=det.gc_hat,
        G=det.G,
        sse_grid=sse_grid,
        sse=sse,
        b=det.b,
        std_b_ols=det.std_b_ols,
        est_type=est_type,
    )


def lstar_predict(
    x0: np.ndarray,
    w: np.ndarray | None,
    z: Sequence[float],
    theta: Sequence[float],
    gc_keep: Sequence[float] | None = None,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Fitted values, the contribution of the z = Inf regime (x0*G*b2) alone, and G.
    """
    z = np.asarray(z, dtype=float).reshape(-1)
    _, x0, w, z = _as_inputs(np.zeros(z.size), x0, w, z)
    k = x0.shape[1]
    g, c, b, _, _ = lstar_parameters(gc_keep, theta)

    G = logistic_weight(z, g, c)
    x = _regressors(x0, w, G)
    y_hat = x @ b
    y_hat2 = (x0 * G.reshape(-1, 1)) @ b[k : 2 * k]
    return y_hat, y_hat2, G
