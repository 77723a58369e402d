"""
Simulated samples for the bond curve, LSTAR and panel estimators.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from .lstar import logistic_weight
from .nelson_siegel import YieldCurveParameters, bond_prices, bond_yields

DEFAULT_MATURITIES = (0.25, 0.5, 0.8, 1.2, 1.75, 2.54, 3.1, 4.0, 5.3, 6.7, 8.0, 9.5, 12.2, 15.0, 20.0)


def simulate_bonds(
    params: YieldCurveParameters,
    maturities: Sequence[float] = DEFAULT_MATURITIES,
    coupons: Sequence[float] | float = 0.05,
    *,
    price_noise: float = 0.0,
    seed: int | None = 0,
) -> pd.DataFrame:
    """
    Bond prices and yields to maturity implied by a Nelson-Siegel curve.

    Returns a DataFrame with columns `price`, `maturity`, `coupon` and `ytm`.
    """
    maturities = np.asarray(maturities, dtype=float)
    coupons = np.broadcast_to(np.asarray(coupons, dtype=float), maturities.shape).copy()
    prices = bond_prices(params, maturities, coupons)
    if price_noise > 0:
        rng = np.random.default_rng(seed)
        prices = prices + rng.normal(scale=price_noise, size=prices.size)
    frame = pd.DataFrame({"price": prices, "maturity": maturities, "coupon": coupons})
    frame["ytm"] = bond_yields(prices, maturities, coupons)
    return frame


def simulate_lstar(
    nobs: int = 500,
    g: float = 2.0,
    c: float = 0.3,
    b1: Sequence[float] = (0.0, 1.0),
    b2: Sequence[float] = (1.0, -1.0),
    *,
    sigma: float = 0.01,
    seed: int | None = 0,
) -> dict[str, np.ndarray]:
    """
    Two-regime LSTAR sample with x0 = [1, x] and z = x.
    """
    rng = np.random.default_rng(seed)
    x = rng.uniform(-2.0, 2.0, size=nobs)
    x0 = np.column_stack([np.ones(nobs), x])
    G = logistic_weight(x, g, c)
    y = (1.0 - G) * (x0 @ np.asarray(b1, dtype=float)) + G * (x0 @ np.asarray(b2, dtype=float))
    y = y + sigma * rng.normal(size=nobs)
    return {"y": y, "x0": x0, "w": np.zeros((nobs, 0)), "z": x}


def simulate_panel(
    n_periods: int = 200,
    n_units: int = 30,
    theta: Sequence[float] = (0.5, 1.0, -0.3, 0.2),
    *,
    missing_share: float = 0.0,
    seed: int | None = 0,
) -> dict[str, np.ndarray]:
    """
    Panel with x = [1, x1], z = [1, z1] and a common time effect in the errors.

    `theta` is the coefficient vector on [1, x1, z1, z1*x1]. A share
    `missing_share` of the observations of y is set to NaN.
    """
    rng = np.random.default_rng(seed)
    x = np.column_stack([np.ones(n_periods), rng.normal(size=n_periods)])
    z1 = rng.normal(size=(n_periods, n_units))
    z = np.stack([np.ones((n_periods, n_units)), z1], axis=2)
    theta = np.asarray(theta, dtype=float)
    fitted = (
        theta[0]
        + theta[1] * x[:, [1]]
        + theta[2] * z1
        + theta[3] * z1 * x[:, [1]]
    )
    common = rng.normal(scale=0.5, size=(n_periods, 1))
    y = fitted + common + rng.normal(size=(n_periods, n_units))
    if missing_share > 0:
        y[rng.uniform(size=y.shape) < missing_share] = np.nan
    return {"y": y, "x": x, "z": z}
