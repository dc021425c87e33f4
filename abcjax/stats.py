# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Statistical kernels used by the inference engine.

Sample summaries:

- :func:`mean`, :func:`median`, :func:`quantiles`, :func:`clip`
- :func:`ess` — effective sample size of linear-space weights

Kolmogorov-Smirnov machinery (weighted samples allowed on both sides):

- :func:`ks2`, :func:`ks2_cdf`, :func:`ks2_test` — two-sample statistic,
  its asymptotic CDF and the resulting p-value
- :func:`ks1`, :func:`ks1_cdf`, :func:`ks1_test` — one-sample versions
  against a CDF callable
- :func:`kolmogorov_cdf` — CDF of the Kolmogorov distribution

The KS statistics validate their result on the host and are therefore
not JIT-compatible; everything else is.
"""

from collections.abc import Callable
from typing import Optional

import jax.numpy as jnp
import jax.random as jr
from jaxtyping import Array, Float

from abcjax.errors import NaNWeight, SizeMismatch
from abcjax.types import PRNGKeyT, Scalar

_KOLMOGOROV_TERMS = 100


def clip(x, a=0.0, b=1.0):
    """Clip ``x`` to ``[a, b]``."""
    return jnp.clip(x, a, b)


def mean(
    x: Float[Array, 'num_samples ...'],
    weights: Optional[Float[Array, ' num_samples']] = None,
) -> Float[Array, '...']:
    """(Weighted) mean along the sample axis.

    Args:
        x: Samples, shape ``(J, ...)``.
        weights: Optional non-negative weights, shape ``(J,)``.

    Returns:
        Mean over the leading axis.
    """
    x = jnp.asarray(x)
    if weights is None:
        return jnp.mean(x, axis=0)
    w = jnp.asarray(weights)
    w = w.reshape(w.shape + (1,) * (x.ndim - 1))
    return jnp.sum(w * x, axis=0) / jnp.sum(w)


def median(x: Float[Array, ' num_samples']) -> Scalar:
    """Median of a sample (mean of the middle pair for even sizes)."""
    return jnp.median(jnp.asarray(x))


def quantiles(
    x: Float[Array, ' num_samples'],
    q: Float[Array, ' num_quantiles'],
    alpha: float = 0.375,
    beta: float = 0.375,
) -> Float[Array, ' num_quantiles']:
    r"""Sample quantiles with the ``(alpha, beta)`` plotting positions.

    Matches :func:`scipy.stats.mstats.mquantiles`; the default
    :math:`\alpha = \beta = 0.375` is approximately unbiased for normal
    samples.

    Args:
        x: Samples.
        q: Quantile levels in ``[0, 1]``.
        alpha: Plotting position parameter :math:`\alpha`.
        beta: Plotting position parameter :math:`\beta`.

    Returns:
        Quantiles, one per level.
    """
    x = jnp.sort(jnp.ravel(jnp.asarray(x)))
    q = jnp.atleast_1d(jnp.asarray(q, dtype=x.dtype))
    n = x.shape[0]
    if n == 0:
        return jnp.full(q.shape, jnp.nan)
    if n == 1:
        return jnp.full(q.shape, x[0])
    m = alpha + q * (1.0 - alpha - beta)
    a = n * q + m
    r = jnp.floor(jnp.clip(a, 1, n - 1)).astype(jnp.int32)
    g = jnp.clip(a - r, 0.0, 1.0)
    return (1.0 - g) * x[r - 1] + g * x[r]


def ess(
    weights: Float[Array, ' num_particles'],
    weight_sum: Optional[Scalar] = None,
    eps: float = 1e-6,
) -> Scalar:
    r"""Effective sample size of linear-space weights.

    .. math::

        \mathrm{ESS} = \frac{(\sum_j w_j)^2}{\sum_j w_j^2}

    Args:
        weights: Non-negative weights.
        weight_sum: Precomputed :math:`\sum_j w_j`, if known.
        eps: Total weights below this threshold yield an ESS of zero.

    Returns:
        The effective sample size (scalar), between 1 and the number of
        weights whenever the total weight is at least ``eps``.
    """
    w = jnp.asarray(weights)
    s = jnp.sum(w) if weight_sum is None else jnp.asarray(weight_sum)
    ss = jnp.sum(w * w)
    return jnp.where(s < eps, 0.0, s * s / jnp.where(ss > 0, ss, 1.0))


# --- Kolmogorov-Smirnov ----------------------------------------------------


def ks2(
    x: Float[Array, ' J'],
    y: Float[Array, ' K'],
    *,
    x_weights: Optional[Float[Array, ' J']] = None,
    y_weights: Optional[Float[Array, ' K']] = None,
    discrete: bool = False,
    key: Optional[PRNGKeyT] = None,
) -> Scalar:
    r"""Two-sample Kolmogorov-Smirnov statistic.

    The samples are merged and sorted; each ``x`` entry steps the scaled
    CDF difference up by :math:`w_j K` and each ``y`` entry steps it down
    by :math:`w_k J`, where :math:`J, K` are the weight totals.  The
    statistic is the largest absolute partial sum divided by :math:`JK`.

    Args:
        x: First sample.
        y: Second sample.
        x_weights: Optional weights for ``x``.
        y_weights: Optional weights for ``y``.
        discrete: Allow identical values: the CDFs are only compared at
            the end of each run of equal values.  Otherwise ties are
            broken uniformly at random.
        key: PRNG key used to break ties when ``discrete`` is false.

    Returns:
        The statistic in ``[0, 1]``.

    Raises:
        ValueError: If either sample is empty.
        SizeMismatch: If weights and samples differ in length.
        NaNWeight: If the statistic is not finite.
    """
    x = jnp.ravel(jnp.asarray(x))
    y = jnp.ravel(jnp.asarray(y))
    n_x, n_y = x.shape[0], y.shape[0]
    if n_x == 0 or n_y == 0:
        raise ValueError('empty sample for ks2')
    wx = jnp.ones(n_x) if x_weights is None else jnp.asarray(x_weights)
    wy = jnp.ones(n_y) if y_weights is None else jnp.asarray(y_weights)
    if wx.shape != x.shape or wy.shape != y.shape:
        raise SizeMismatch(
            f'ks2 weights {wx.shape}, {wy.shape} do not match samples '
            f'{x.shape}, {y.shape}'
        )
    sum_x = jnp.sum(wx)
    sum_y = jnp.sum(wy)

    values = jnp.concatenate([x, y])
    steps = jnp.concatenate([wx * sum_y, -wy * sum_x])
    if discrete:
        # x before y inside a run of equal values
        side = jnp.concatenate(
            [jnp.zeros(n_x, jnp.int32), jnp.ones(n_y, jnp.int32)]
        )
        order = jnp.lexsort((side, values))
    else:
        key = jr.PRNGKey(0) if key is None else key
        noise = jr.uniform(key, values.shape)
        order = jnp.lexsort((noise, values))
    sorted_values = values[order]
    cdf_diff = jnp.cumsum(steps[order])
    if discrete:
        last_of_run = jnp.concatenate(
            [sorted_values[:-1] != sorted_values[1:], jnp.array([True])]
        )
        cdf_diff = jnp.where(last_of_run, cdf_diff, 0.0)
    d = jnp.max(jnp.abs(cdf_diff)) / (sum_x * sum_y)
    if not jnp.isfinite(d):
        raise NaNWeight(
            f'non-finite ks2 statistic {d} (weight sums {sum_x}, {sum_y})'
        )
    return d


def ks1(
    x: Float[Array, ' J'],
    cdf: Callable[[Array], Array],
    *,
    weights: Optional[Float[Array, ' J']] = None,
) -> Scalar:
    r"""One-sample Kolmogorov-Smirnov statistic against ``cdf``.

    Compares the (weighted) empirical CDF with ``cdf`` on both sides of
    every jump.

    Args:
        x: Sample.
        cdf: Vectorized cumulative distribution function.
        weights: Optional weights for ``x``.

    Returns:
        The statistic in ``[0, 1]``.
    """
    x = jnp.ravel(jnp.asarray(x))
    if x.shape[0] == 0:
        raise ValueError('empty sample for ks1')
    w = jnp.ones(x.shape[0]) if weights is None else jnp.asarray(weights)
    if w.shape != x.shape:
        raise SizeMismatch(f'ks1 weights {w.shape} vs sample {x.shape}')
    order = jnp.argsort(x)
    x, w = x[order], w[order]
    upper = jnp.cumsum(w) / jnp.sum(w)
    lower = upper - w / jnp.sum(w)
    f = cdf(x)
    return jnp.maximum(jnp.max(upper - f), jnp.max(f - lower))


def kolmogorov_cdf(x: Float[Array, '...']) -> Float[Array, '...']:
    r"""CDF of the Kolmogorov distribution.

    Uses :math:`1 + 2\sum_{i\ge1} (-1)^i e^{-2 i^2 x^2}` for
    :math:`x \ge 1` and the dual series
    :math:`\frac{\sqrt{2\pi}}{x}\sum_{k\ge1} e^{-(2k-1)^2\pi^2/(8x^2)}`
    below, where the alternating series converges slowly.

    Args:
        x: Evaluation points.

    Returns:
        :math:`P(X \le x)`, same shape as ``x``.
    """
    x = jnp.asarray(x, dtype=float)
    i = jnp.arange(1, _KOLMOGOROV_TERMS + 1, dtype=x.dtype)
    sign = jnp.where(i % 2 == 0, 1.0, -1.0)
    x_safe = jnp.where(x > 0, x, 1.0)
    xe = x_safe[..., None]
    large = 1.0 + 2.0 * jnp.sum(sign * jnp.exp(-2.0 * i**2 * xe**2), axis=-1)
    small = (
        jnp.sqrt(2.0 * jnp.pi)
        / x_safe
        * jnp.sum(
            jnp.exp(-((2.0 * i - 1.0) ** 2) * jnp.pi**2 / (8.0 * xe**2)),
            axis=-1,
        )
    )
    cdf = jnp.where(x <= 0, 0.0, jnp.where(x < 1.0, small, large))
    return jnp.clip(cdf, 0.0, 1.0)


def ks1_cdf(x: Float[Array, '...'], n: Scalar) -> Float[Array, '...']:
    r"""Approximate CDF of the one-sample KS statistic for size ``n``.

    Applies Vrbik's small-sample correction
    :math:`y = x\sqrt{n} + \frac{1}{6\sqrt{n}} + \frac{x\sqrt{n} - 1}{4n}`
    before evaluating :func:`kolmogorov_cdf`.  Invalid for discrete
    samples.
    """
    s = jnp.sqrt(jnp.asarray(n, dtype=float))
    y = jnp.asarray(x) * s
    y = y + 1.0 / (6.0 * s) + (y - 1.0) / (4.0 * n)
    return kolmogorov_cdf(y)


def ks2_cdf(
    x: Float[Array, '...'],
    n_x: Scalar,
    n_y: Optional[Scalar] = None,
) -> Float[Array, '...']:
    r"""Approximate CDF of the two-sample KS statistic.

    Uses the one-sample CDF at the effective size
    :math:`n_x n_y / (n_x + n_y)`.
    """
    n_y = n_x if n_y is None else n_y
    return ks1_cdf(x, n_x * n_y / (n_x + n_y))


def ks2_test(
    x: Float[Array, ' J'],
    y: Float[Array, ' K'],
    *,
    x_weights: Optional[Float[Array, ' J']] = None,
    y_weights: Optional[Float[Array, ' K']] = None,
    discrete: bool = False,
    key: Optional[PRNGKeyT] = None,
) -> Scalar:
    """p-value of the two-sample KS test.

    Weighted samples count with their effective sample size.

    Args:
        x: First sample.
        y: Second sample.
        x_weights: Optional weights for ``x``.
        y_weights: Optional weights for ``y``.
        discrete: See :func:`ks2`.
        key: See :func:`ks2`.

    Returns:
        p-value in ``[0, 1]``.
    """
    d = ks2(
        x,
        y,
        x_weights=x_weights,
        y_weights=y_weights,
        discrete=discrete,
        key=key,
    )
    n_x = jnp.size(x) if x_weights is None else ess(x_weights)
    n_y = jnp.size(y) if y_weights is None else ess(y_weights)
    return 1.0 - ks2_cdf(d, n_x, n_y)


def ks1_test(
    x: Float[Array, ' J'],
    cdf: Callable[[Array], Array],
    *,
    weights: Optional[Float[Array, ' J']] = None,
) -> Scalar:
    """p-value of the one-sample KS test against ``cdf``."""
    n = jnp.size(x) if weights is None else ess(weights)
    return 1.0 - ks1_cdf(ks1(x, cdf, weights=weights), n)
