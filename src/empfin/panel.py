"""
Pooled LS with Driscoll-Kraay and White standard errors for unbalanced panels.

The factors x_t are common to all individuals while z_{t,i} are time-varying
individual characteristics; the effective regressors are kron(z_{t,i}, x_t).
With z = [1, z1] and x = [1, x1, x2, x3] they are
[1, x1, x2, x3, z1, z1*x1, z1*x2, z1*x3].

Reference:
    Driscoll and Kraay (1998), "Consistent Covariance Matrix Estimation with
        Spatially Dependent Panel Data", Review of Economics and Statistics 80.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

import numpy as np

from .util import excise, newey_west

logger = logging.getLogger(__name__)


class PanelScaling(enum.Enum):
    """
    Divisor N(t) of the period-t moment conditions.

    EFFECTIVE_COUNT scales by the number of non-missing individuals in t,
    which replicates a calendar-time portfolio approach.
    """

    FULL_PANEL = "full_panel"
    EFFECTIVE_COUNT = "effective_count"


@dataclass
class PanelOLSResult:
    theta: np.ndarray
    std_dk: np.ndarray
    std_white: np.ndarray
    cov_dk: np.ndarray
    yhat: np.ndarray | None
    r_squared: float | None
    cov_white: np.ndarray
    cov_dk_lags: np.ndarray
    std_dk_lags: np.ndarray
    n_periods: int


def row_kron(z_t: np.ndarray, x_t: np.ndarray) -> np.ndarray:
    """
    Row-by-row Kronecker product of the N x L matrix z_t and the N x K matrix x_t.
    """
    z_t = np.asarray(z_t, dtype=float)
    x_t = np.asarray(x_t, dtype=float)
    n = z_t.shape[0]
    return np.einsum("il,ik->ilk", z_t, x_t).reshape(n, -1)


def _period_regressors(x: np.ndarray, z: np.ndarray, t: int) -> np.ndarray:
    n = z.shape[1]
    x0_t = np.tile(x[t], (n, 1))
    return row_kron(z[t], x0_t)


def panel_ols_dk(
    y: np.ndarray,
    x: np.ndarray,
    z: np.ndarray,
    yhat: bool = False,
    lags: int = 0,
    scaling: PanelScaling = PanelScaling.FULL_PANEL,
) -> PanelOLSResult:
    """
    LS on kron(z, x) with Driscoll-Kraay and White covariance matrices.

    Parameters
    ----------
    y : np.ndarray
        T x N dependent variable, y[t, i] is for period t and individual i.
    x : np.ndarray
        T x K factors common to all individuals.
    z : np.ndarray
        T x N x L individual characteristics (or T x N for L = 1).
    yhat : bool
        If True, report fitted values and the (pseudo) R2.
    lags : int
        Number of lags in the Driscoll-Kraay covariance (`cov_dk_lags`).
    scaling : PanelScaling
        Divisor of the period moment conditions.
    """
    y = np.asarray(y, dtype=float)
    x = np.asarray(x, dtype=float)
    z = np.asarray(z, dtype=float)
    if z.ndim == 2:
        z = z[:, :, np.newaxis]
    T, N = y.shape
    if x.shape[0] != T or z.shape[:2] != (T, N):
        raise ValueError("y (T x N), x (T x K) and z (T x N x L) are not conformable")
    KL = x.shape[1] * z.shape[2]

    xx = np.zeros((KL, KL))
    xy = np.zeros(KL)
    n_eff = np.zeros(T, dtype=int)
    for t in range(T):
        y_t, x_t = excise(y[t], _period_regressors(x, z, t))
        n_eff[t] = y_t.size if scaling is PanelScaling.EFFECTIVE_COUNT else N
        if y_t.size == 0:
            continue
        xx += x_t.T @ x_t / n_eff[t]
        xy += x_t.T @ y_t / n_eff[t]

    Tb = int(np.sum(n_eff > 0))
    xx /= Tb
    xy /= Tb
    theta = np.linalg.solve(xx, xy)

    fitted = np.full((T, N), np.nan) if yhat else None
    h_rows = []
    omega_white = np.zeros((KL, KL))
    for t in range(T):
        x_t = _period_regressors(x, z, t)
        yhat_t = x_t @ theta
        if fitted is not None:
            fitted[t] = yhat_t
        r_t, x_t = excise(y[t] - yhat_t, x_t)
        if r_t.size == 0:
            continue
        hi_t = x_t * r_t.reshape(-1, 1)
        h_rows.append(hi_t.sum(axis=0) / n_eff[t])
        omega_white += hi_t.T @ hi_t / n_eff[t] ** 2

    # periods without data are skipped, so lag j means j periods with data
    h = np.array(h_rows).reshape(-1, KL)
    S_dk = newey_west(h, 0, nobs=Tb) / Tb
    S_dk_lags = newey_west(h, lags, nobs=Tb) / Tb
    S_white = omega_white / Tb**2

    xx_inv = np.linalg.inv(xx)
    cov_dk = xx_inv @ S_dk @ xx_inv.T
    cov_white = xx_inv @ S_white @ xx_inv.T
    cov_dk_lags = xx_inv @ S_dk_lags @ xx_inv.T

    r_squared = None
    if fitted is not None:
        yy = excise(fitted.reshape(-1), y.reshape(-1))
        r_squared = float(np.corrcoef(yy[0], yy[1])[0, 1] ** 2)

    logger.debug("Panel LS with %s effective periods and %s regressors", Tb, KL)
    return PanelOLSResult(
        theta=theta,
        std_dk=np.sqrt(np.diag(cov_dk)),
        std_white=np.sqrt(np.diag(cov_white)),
        cov_dk=cov_dk,
        yhat=fitted,
        r_squared=r_squared,
        cov_white=cov_white,
        cov_dk_lags=cov_dk_lags,
        std_dk_lags=np.sqrt(np.diag(cov_dk_lags)),
        n_periods=Tb,
    )
