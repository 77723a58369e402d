"""
(Extended) Nelson-Siegel yield curve fitted to coupon bond prices.

The discount function follows Svensson's extension of Nelson-Siegel:

    s(t) = b0 + b1*(1-e^(-t/tau))/(t/tau)
              + b2*[(1-e^(-t/tau))/(t/tau) - e^(-t/tau)]
              + b3*[(1-e^(-t/tau2))/(t/tau2) - e^(-t/tau2)]
    d(t) = exp(-s(t)*t)

Parameters are estimated by non-linear least squares on squared price (or
yield to maturity) errors, optionally imposing b0 + b1 = s0 on the short rate.

References:
    Svensson (1995), "Estimating Forward Interest Rates with the Extended
        Nelson & Siegel Method", Sveriges Riksbank Quarterly Review 1995:3.
    Soderlind and Svensson (1997), "New Techniques to Extract Market
        Expectations from Financial Instruments", JME 40, 383-429.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy.optimize import minimize

from .util import bond_yield_to_maturity

logger = logging.getLogger(__name__)

LOSS_OFFSET = 1.0
LOSS_SCALE = 100.0
NS_FTOL = 1e-12
NS_XTOL = 1e-10
NS_MAXITER = 10_000
NS_MAX_RESTARTS = 10


class LossType(enum.Enum):
    PRICE = "price"
    YIELD = "yield"


class NSVariant(enum.Enum):
    """
    Model variant implied by the vector that is optimised over.
    """

    STANDARD_RESTRICTED = 3
    STANDARD_FREE = 4
    EXTENDED_RESTRICTED = 5
    EXTENDED_FREE = 6

    @classmethod
    def from_length(cls, n: int) -> "NSVariant":
        try:
            return cls(n)
        except ValueError:
            raise ValueError(f"Parameter vector must have 3, 4, 5 or 6 elements, got {n}") from None

    @classmethod
    def of(cls, n_full: int, restricted: bool) -> "NSVariant":
        if n_full not in (4, 6):
            raise ValueError(f"par0 must have 4 or 6 elements, got {n_full}")
        return cls.from_length(n_full - 1 if restricted else n_full)

    @property
    def restricted(self) -> bool:
        return self in (NSVariant.STANDARD_RESTRICTED, NSVariant.EXTENDED_RESTRICTED)

    @property
    def extended(self) -> bool:
        return self in (NSVariant.EXTENDED_RESTRICTED, NSVariant.EXTENDED_FREE)

    @property
    def positive_slots(self) -> list[int]:
        """Positions of b0, tau (and tau2) in the reduced vector."""
        return {
            NSVariant.STANDARD_RESTRICTED: [0, 2],
            NSVariant.STANDARD_FREE: [0, 3],
            NSVariant.EXTENDED_RESTRICTED: [0, 2, 4],
            NSVariant.EXTENDED_FREE: [0, 3, 5],
        }[self]


@dataclass(frozen=True)
class YieldCurveParameters:
    """
    Curve parameters; `extended` marks the Svensson form with (b3, tau2).
    """

    b0: float
    b1: float
    b2: float
    tau: float
    b3: float = 0.0
    tau2: float = 1.0
    extended: bool = False

    def as_array(self) -> np.ndarray:
        values = [self.b0, self.b1, self.b2, self.tau]
        if self.extended:
            values += [self.b3, self.tau2]
        return np.array(values, dtype=float)

    @classmethod
    def from_array(cls, par: Sequence[float]) -> "YieldCurveParameters":
        par = np.asarray(par, dtype=float)
        if par.size not in (4, 6):
            raise ValueError(f"Expected 4 or 6 parameters, got {par.size}")
        return cls(*(float(p) for p in par), extended=par.size == 6)


def _ns_loadings(t: np.ndarray, tau: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    x = t / tau
    ex = np.exp(-x)
    slope = np.where(x > 0, -np.expm1(-x) / np.where(x > 0, x, 1.0), 1.0)
    return slope, slope - ex, ex


def ns_curve(
    t: Sequence[float],
    b0: float,
    b1: float,
    b2: float,
    tau: float,
    b3: float = 0.0,
    tau2: float = 1.0,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Spot rates, instantaneous forward rates and discount factors at times `t`.

    Parameters
    ----------
    t : array-like
        Times to payment in years, t > 0.
    b0, b1, b2, tau, b3, tau2 : float
        Curve parameters, tau and tau2 > 0. b3 = 0 gives standard Nelson-Siegel.

    Returns
    -------
    tuple of np.ndarray
        (spot, forward, discount), aligned with `t`.
    """
    t = np.asarray(t, dtype=float)
    slope1, hump1, ex1 = _ns_loadings(t, tau)
    _, hump2, ex2 = _ns_loadings(t, tau2)

    spot = b0 + b1 * slope1 + b2 * hump1 + b3 * hump2
    forward = b0 + b1 * ex1 + b2 * (t / tau) * ex1 + b3 * (t / tau2) * ex2
    discount = np.exp(-spot * t)
    return spot, forward, discount


def fitted_curve(params: YieldCurveParameters, t: Sequence[float]) -> pd.DataFrame:
    """
    Spot, forward and discount curves as a DataFrame indexed by maturity.
    """
    t = np.asarray(t, dtype=float)
    spot, forward, discount = ns_curve(
        t, params.b0, params.b1, params.b2, params.tau, params.b3, params.tau2
    )
    return pd.DataFrame(
        {"spot": spot, "forward": forward, "discount": discount},
        index=pd.Index(t, name="maturity"),
    )


def cashflow_times(tm: float) -> np.ndarray:
    """
    Times to coupon payments of a bond maturing in `tm` years (annual coupons).
    """
    first = tm % 1.0
    ti = np.arange(first, tm + 0.5, 1.0)
    return ti[ti > 0]


def reduce_parameters(par0: Sequence[float], s0: float | None) -> np.ndarray:
    """
    Drop b1 from a full 4x1 or 6x1 vector when b0 + b1 = s0 is imposed.
    """
    par0 = np.asarray(par0, dtype=float)
    NSVariant.of(par0.size, s0 is not None)
    if s0 is None:
        return par0.copy()
    return np.delete(par0, 1)


def expand_parameters(b: Sequence[float], s0: float | None = None) -> YieldCurveParameters:
    """
    Map the vector that is optimised over into the full set of curve parameters.

    b0, tau and tau2 enter in absolute value. With 3 or 5 elements, b1 = s0 - b0.
    """
    b = np.asarray(b, dtype=float)
    variant = NSVariant.from_length(b.size)
    if variant.restricted:
        if s0 is None:
            raise ValueError(f"A {b.size}-element parameter vector requires the short rate s0")
        b0 = abs(b[0])
        b1 = s0 - b0
        rest = b[1:]
    else:
        b0 = abs(b[0])
        b1 = b[1]
        rest = b[2:]
    b2, tau = rest[0], abs(rest[1])
    if variant.extended:
        b3, tau2 = rest[2], abs(rest[3])
    else:
        b3, tau2 = 0.0, 1.0
    return YieldCurveParameters(
        float(b0), float(b1), float(b2), float(tau), float(b3), float(tau2), extended=variant.extended
    )


def bond_prices(
    params: YieldCurveParameters,
    maturities: Sequence[float],
    coupons: Sequence[float],
) -> np.ndarray:
    """
    Fitted prices of bonds with face value 1 and annual coupons.
    """
    maturities = np.asarray(maturities, dtype=float)
    coupons = np.asarray(coupons, dtype=float)
    prices = np.full(maturities.size, np.nan)
    for i, (tm, c) in enumerate(zip(maturities, coupons)):
        ti = cashflow_times(tm)
        _, _, d = ns_curve(ti, params.b0, params.b1, params.b2, params.tau, params.b3, params.tau2)
        prices[i] = np.sum(d * c) + d[-1]
    return prices


def bond_yields(
    prices: Sequence[float],
    maturities: Sequence[float],
    coupons: Sequence[float],
) -> np.ndarray:
    """
    Yields to maturity of a set of bonds, see `util.bond_yield_to_maturity`.
    """
    return np.array([
        bond_yield_to_maturity(q, c, cashflow_times(tm))
        for q, tm, c in zip(np.asarray(prices, dtype=float), maturities, coupons)
    ])


def bond_loss(
    b: Sequence[float],
    observed: Sequence[float],
    maturities: Sequence[float],
    coupons: Sequence[float],
    s0: float | None = None,
    loss_type: LossType = LossType.PRICE,
    weight: float | Sequence[float] = 1.0,
) -> float:
    """
    Weighted squared pricing errors of the (extended) Nelson-Siegel model.

    `observed` holds bond prices, or yields to maturity when
    loss_type is LossType.YIELD. The loss is 1 + 100*sum(weight*(fitted - observed)^2).
    """
    params = expand_parameters(b, s0)
    fitted = bond_prices(params, maturities, coupons)
    if loss_type is LossType.YIELD:
        fitted = bond_yields(fitted, maturities, coupons)
    errors = fitted - np.asarray(observed, dtype=float)
    weight = np.asarray(weight, dtype=float)
    return float(LOSS_OFFSET + LOSS_SCALE * np.sum(weight * errors**2))


def _nelder_mead(objective, start: np.ndarray):
    return minimize(
        objective,
        start,
        method="Nelder-Mead",
        options={"fatol": NS_FTOL, "xatol": NS_XTOL, "maxiter": NS_MAXITER, "maxfev": 2 * NS_MAXITER},
    )


def estimate_bond_ns(
    par0: Sequence[float],
    observed: Sequence[float],
    maturities: Sequence[float],
    coupons: Sequence[float],
    s0: float | None = None,
    loss_type: LossType = LossType.PRICE,
    weight: float | Sequence[float] = 1.0,
) -> np.ndarray | None:
    """
    Non-linear least squares estimate of the (extended) Nelson-Siegel curve.

    Parameters
    ----------
    par0 : array-like
        Starting values, [b0, b1, b2, tau] or [b0, b1, b2, tau, b3, tau2].
        With s0 given, the b1 entry is ignored.
    observed : array-like
        Bond prices (e.g. 1.01), or yields to maturity with LossType.YIELD.
    maturities : array-like
        Times to maturity in years (e.g. 2.54).
    coupons : array-like
        Annual coupon rates (e.g. 0.06).
    s0 : float, optional
        If given, b0 + b1 = s0 is imposed.
    loss_type : LossType
        Minimise squared price errors or squared yield errors.
    weight : float or array-like
        Weights in the loss function.

    Returns
    -------
    np.ndarray or None
        Estimates with the same layout as `par0`, or None if the optimiser
        did not converge.
    """
    observed = np.asarray(observed, dtype=float)
    maturities = np.asarray(maturities, dtype=float)
    coupons = np.asarray(coupons, dtype=float)
    if not observed.size == maturities.size == coupons.size:
        raise ValueError("observed, maturities and coupons must have the same length")

    start = reduce_parameters(par0, s0)
    variant = NSVariant.from_length(start.size)

    def objective(b: np.ndarray) -> float:
        return bond_loss(b, observed, maturities, coupons, s0, loss_type, weight)

    res = _nelder_mead(objective, start)
    # Nelder-Mead can stall on a collapsed simplex; restart while the loss improves
    for restart in range(1, NS_MAX_RESTARTS + 1):
        if not res.success:
            break
        again = _nelder_mead(objective, res.x)
        logger.debug("Nelder-Mead restart %s, loss = %.15g", restart, again.fun)
        if not again.success or again.fun >= res.fun - NS_FTOL:
            if again.success and again.fun < res.fun:
                res = again
            break
        res = again

    if not res.success:
        logger.warning("no convergence in Nelson-Siegel estimation: %s", res.message)
        return None

    nsb = np.array(res.x, dtype=float)
    nsb[variant.positive_slots] = np.abs(nsb[variant.positive_slots])
    if variant.restricted:
        nsb = np.insert(nsb, 1, s0 - nsb[0])
    return nsb
