# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Posterior summaries of a sampled random variable.

Posterior summaries:

- :func:`weighted_mean` — weighted posterior mean
- :func:`weighted_variance` — weighted posterior variance
- :func:`weighted_quantile` — weighted quantiles for credible
  intervals

Computational faithfulness:

- :func:`particle_diversity` — fraction of distinct particle lineages
- :func:`acceptance_rate` — fraction of accepted move proposals

All functions read the particle arrays of a
:class:`~abcjax.node.RandomVariable` and never modify it.
"""

from typing import TYPE_CHECKING

import jax.numpy as jnp
from jax import vmap
from jaxtyping import Array, Float

from abcjax.errors import MissingSamples
from abcjax.types import Scalar

if TYPE_CHECKING:
    from abcjax.node import RandomVariable


def _normalized_weights(node: 'RandomVariable') -> Float[Array, ' J']:
    if node.J == 0:
        raise MissingSamples(f'{node.name} has no samples')
    if node.weights is None:
        return jnp.full(node.J, 1.0 / node.J)
    return node.weights / jnp.sum(node.weights)


def weighted_mean(node: 'RandomVariable') -> Float[Array, '...']:
    r"""Compute the weighted mean of the particles.

    Args:
        node: Sampled random variable.

    Returns:
        Weighted mean, shape of a single particle value.
    """
    weights = _normalized_weights(node)
    return jnp.tensordot(weights, node.samples, axes=1)


def weighted_variance(node: 'RandomVariable') -> Float[Array, '...']:
    r"""Compute the weighted variance of the particles.

    Uses the formula :math:`V = \sum_j w_j (x_j - \mu)^2` where
    :math:`\mu` is the weighted mean.

    Args:
        node: Sampled random variable.

    Returns:
        Weighted variances, shape of a single particle value.
    """
    weights = _normalized_weights(node)
    deviations = node.samples - weighted_mean(node)
    return jnp.tensordot(weights, deviations**2, axes=1)


def weighted_quantile(
    node: 'RandomVariable',
    q: Float[Array, ' num_quantiles'],
) -> Float[Array, 'num_quantiles ...']:
    r"""Compute weighted quantiles of the particles.

    Sorts particles, computes cumulative weights, and interpolates.

    Args:
        node: Sampled random variable.
        q: Quantile levels in [0, 1], e.g. ``jnp.array([0.025, 0.975])``
            for a 95% credible interval.

    Returns:
        Weighted quantiles, shape ``(num_quantiles,)`` for scalar
        particles and ``(num_quantiles, dim)`` for vector particles.
    """
    weights = _normalized_weights(node)
    q = jnp.atleast_1d(jnp.asarray(q))

    def _quantile_one_dim(
        p: Float[Array, ' J'],
    ) -> Float[Array, ' num_quantiles']:
        sort_idx = jnp.argsort(p)
        p_sorted = p[sort_idx]
        w_sorted = weights[sort_idx]
        # Cumulative weights centered at each particle's mass midpoint
        cum_w = jnp.cumsum(w_sorted) - 0.5 * w_sorted
        return jnp.interp(q, cum_w, p_sorted)

    samples = node.samples
    if samples.ndim == 1:
        return _quantile_one_dim(samples)
    return vmap(_quantile_one_dim, in_axes=1)(samples).T


def particle_diversity(node: 'RandomVariable') -> Scalar:
    r"""Compute the fraction of distinct lineages among the particles.

    A value of 1.0 means every particle descends from a different draw
    or accepted move; after resampling, duplicated lineages lower it.

    Uses an indicator-based method (not ``jnp.unique``): a lineage id
    is new if it differs from its predecessor in sorted order.

    Args:
        node: Sampled random variable.

    Returns:
        Fraction of unique lineage ids, in ``(0, 1]``.
    """
    if node.J == 0:
        raise MissingSamples(f'{node.name} has no samples')
    sorted_ids = jnp.sort(node.index_map)
    is_unique = jnp.concatenate(
        [
            jnp.array([True]),
            sorted_ids[1:] != sorted_ids[:-1],
        ]
    )
    return jnp.sum(is_unique) / node.J


def acceptance_rate(node: 'RandomVariable') -> float:
    """Fraction of move proposals accepted so far.

    Requires the node to keep ``stats``; returns ``nan`` before any
    move.
    """
    if node.stats is None:
        raise ValueError(f'{node.name} does not keep stats')
    if node.stats.proposals == 0:
        return float('nan')
    return node.stats.accepts / node.stats.proposals
