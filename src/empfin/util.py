"""
Numerical primitives shared by the estimation modules.

The helpers wrap NumPy/SciPy/Statsmodels APIs: least squares, pruning of rows
with missing values, bond yield to maturity, finite-difference Jacobians and
the Newey-West long-run covariance of moment conditions.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np
from numpy.linalg import LinAlgError
from scipy.optimize import newton
from statsmodels.regression.linear_model import OLS
from statsmodels.tools.numdiff import approx_fprime

YTM_GUESS = 0.05
YTM_TOL = 1e-7
YTM_MAXITER = 100


@dataclass
class OLSResult:
    """
    Container for a least squares fit of `y` on `x`.
    """

    coefficients: np.ndarray
    residuals: np.ndarray
    fitted: np.ndarray
    cov: np.ndarray
    r_squared: float
    nobs: int


def ols(y: Sequence[float], x: np.ndarray) -> OLSResult:
    """
    LS of `y` on `x` (no constant is added).

    `cov` is the conventional covariance s2*inv(x'x). A design matrix without
    full column rank raises LinAlgError.
    """
    y = np.asarray(y, dtype=float).reshape(-1)
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    if x.shape[0] != y.size:
        raise ValueError(f"y has {y.size} rows but x has {x.shape[0]}")
    if np.linalg.matrix_rank(x) < x.shape[1]:
        raise LinAlgError("Design matrix is rank deficient")

    model = OLS(y, x).fit()
    fitted = np.asarray(model.fittedvalues, dtype=float)
    # R2 as squared correlation of fitted and actual, valid without a constant
    if np.std(fitted) > 0 and np.std(y) > 0:
        r_squared = float(np.corrcoef(fitted, y)[0, 1] ** 2)
    else:
        r_squared = np.nan
    return OLSResult(
        coefficients=np.asarray(model.params, dtype=float),
        residuals=np.asarray(model.resid, dtype=float),
        fitted=fitted,
        cov=np.asarray(model.cov_params(), dtype=float),
        r_squared=r_squared,
        nobs=int(model.nobs),
    )


def excise(*arrays: np.ndarray) -> tuple[np.ndarray, ...]:
    """
    Drop every row that contains a NaN in any of the (row-aligned) arrays.
    """
    arrays = tuple(np.asarray(a, dtype=float) for a in arrays)
    if not arrays:
        return ()
    nobs = arrays[0].shape[0]
    mask = np.ones(nobs, dtype=bool)
    for a in arrays:
        if a.shape[0] != nobs:
            raise ValueError("All arrays must have the same number of rows.")
        bad = np.isnan(a)
        if a.ndim > 1:
            bad = bad.any(axis=tuple(range(1, a.ndim)))
        mask &= ~bad
    return tuple(a[mask] for a in arrays)


def bond_yield_to_maturity(
    price: float,
    coupon: float,
    times: Sequence[float],
    *,
    face: float = 1.0,
    guess: float = YTM_GUESS,
    tol: float = YTM_TOL,
    maxiter: int = YTM_MAXITER,
) -> float:
    """
    Yield to maturity `y` solving price = sum(coupon/(1+y)^t) + face/(1+y)^t[-1].

    Compounding is annual. Raises RuntimeError if Newton's method does not
    reach `tol` within `maxiter` iterations.
    """
    times = np.asarray(times, dtype=float)

    def pricing_error(y: float) -> float:
        disc = (1.0 + y) ** (-times)
        return float(coupon * disc.sum() + face * disc[-1] - price)

    def pricing_slope(y: float) -> float:
        ddisc = -times * (1.0 + y) ** (-times - 1.0)
        return float(coupon * ddisc.sum() + face * ddisc[-1])

    return float(newton(pricing_error, guess, fprime=pricing_slope, tol=tol, maxiter=maxiter))


def numerical_jacobian(func: Callable[[np.ndarray], np.ndarray], point: Sequence[float]) -> np.ndarray:
    """
    Centred finite-difference Jacobian, rows are outputs and columns inputs.
    """
    point = np.asarray(point, dtype=float)
    n_out = np.atleast_1d(func(point)).size
    jac = approx_fprime(point, func, centered=True)
    return np.asarray(jac, dtype=float).reshape(n_out, point.size)


def newey_west(h: np.ndarray, lags: int = 0, *, nobs: int | None = None) -> np.ndarray:
    """
    Newey-West (Bartlett kernel) estimate of the long-run covariance of the
    mean of the rows of `h`, scaled as ACov(sqrt(T)*hbar).

    Parameters
    ----------
    h : np.ndarray
        T x p matrix of moment conditions, row t is h_t. Rows are not demeaned.
    lags : int
        Bandwidth m; 0 gives the outer-product (White) estimator.
    nobs : int, optional
        Divisor, defaults to T.
    """
    h = np.asarray(h, dtype=float)
    if h.ndim == 1:
        h = h.reshape(-1, 1)
    T = h.shape[0]
    if lags < 0:
        raise ValueError("lags must be non-negative")
    if lags >= T:
        warnings.warn(
            f"Bandwidth {lags} is not smaller than the sample size {T}",
            RuntimeWarning,
        )
    divisor = T if nobs is None else nobs

    omega = h.T @ h
    for j in range(1, lags + 1):
        gamma_j = h[j:].T @ h[:-j]
        omega = omega + (1.0 - j / (lags + 1.0)) * (gamma_j + gamma_j.T)
    return omega / divisor
