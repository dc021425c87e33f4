# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Random draws with explicit PRNG keys.

All functions take a JAX PRNG key first, the same convention as
:mod:`jax.random`.
"""

from typing import Optional

import jax.numpy as jnp
import jax.random as jr
from jaxtyping import Array, Float, Int

from abcjax.errors import InvalidWeights
from abcjax.types import PRNGKeyT


def uniform(
    key: PRNGKeyT,
    shape: tuple[int, ...] = (),
    low: Float[Array, '...'] = 0.0,
    high: Float[Array, '...'] = 1.0,
) -> Float[Array, '...']:
    """Uniform draws on the open interval ``(low, high)``.

    ``jax.random.uniform`` includes the lower bound; zero draws are
    replaced by the smallest positive float so that ``log`` of a unit
    draw is always finite.

    Args:
        key: JAX PRNG key.
        shape: Output shape.
        low: Lower bound, broadcastable to ``shape``.
        high: Upper bound, broadcastable to ``shape``.

    Returns:
        Array of uniform draws.
    """
    u = jr.uniform(key, shape)
    u = jnp.where(u > 0, u, jnp.finfo(u.dtype).tiny)
    return low + u * (jnp.asarray(high) - low)


def discrete_uniform(
    key: PRNGKeyT,
    n: int,
    shape: tuple[int, ...] = (),
) -> Int[Array, '...']:
    """Uniform draws on ``{0, ..., n-1}``."""
    return jr.randint(key, shape, 0, n)


def discrete(
    key: PRNGKeyT,
    weights: Float[Array, ' num_categories'],
    num_samples: Optional[int] = None,
) -> Int[Array, '...']:
    r"""Categorical draws on ``{0, ..., J-1}`` with :math:`P(j) \propto w_j`.

    A zero total weight is treated as uniform.

    Args:
        key: JAX PRNG key.
        weights: Non-negative, not necessarily normalized weights.
        num_samples: Number of draws; a scalar draw when ``None``.

    Returns:
        Indices into ``weights``.

    Raises:
        InvalidWeights: If any weight is negative.
    """
    weights = jnp.asarray(weights)
    if bool(jnp.any(weights < 0)):
        raise InvalidWeights('negative weight for discrete draw')
    shape = () if num_samples is None else (num_samples,)
    total = jnp.sum(weights)
    if total <= 0:
        return discrete_uniform(key, weights.shape[0], shape)
    return jr.categorical(key, jnp.log(weights / total), shape=shape)


def triangular(
    key: PRNGKeyT,
    shape: tuple[int, ...] = (),
    low: Float[Array, '...'] = 0.0,
    high: Float[Array, '...'] = 1.0,
    mode: Optional[Float[Array, '...']] = None,
) -> Float[Array, '...']:
    """Triangular draws on ``[low, high]``.

    Args:
        key: JAX PRNG key.
        shape: Output shape.
        low: Lower bound.
        high: Upper bound.
        mode: Peak of the density; the midpoint when ``None``.

    Returns:
        Array of triangular draws.
    """
    low = jnp.asarray(low, dtype=float)
    high = jnp.asarray(high, dtype=float)
    mode = (low + high) / 2 if mode is None else jnp.asarray(mode)
    return jr.triangular(key, low, mode, high, shape)
