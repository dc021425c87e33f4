# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Log-space weight utilities.

Importance weights are carried in linear space by the particle nodes
(``None`` meaning uniform) but every update is computed in log space.
"""

import jax.numpy as jnp
from jax.scipy.special import logsumexp
from jaxtyping import Array, Bool, Float

from abcjax.types import Scalar


def log_normalize(
    log_weights: Float[Array, ' J'],
) -> tuple[Float[Array, ' J'], Scalar]:
    """Split particle log weights into normalized weights and their total.

    When the incoming log weights are normalized previous weights plus a
    reweighting increment, the returned total is that step's
    log-evidence increment.

    Args:
        log_weights: Unnormalized log weights. ``-inf`` entries are
            impossible particles and stay ``-inf``.

    Returns:
        ``(log_normalized, log_total)`` with ``logsumexp(log_normalized)``
        equal to zero and ``log_total = logsumexp(log_weights)``.
    """
    log_total = logsumexp(log_weights)
    return log_weights - log_total, log_total


def normalize(log_weights: Float[Array, ' J']) -> Float[Array, ' J']:
    """Linear weights summing to one, as the resamplers expect."""
    return jnp.exp(log_normalize(log_weights)[0])


def finite(log_values: Float[Array, '...']) -> Float[Array, '...']:
    r"""Clip :math:`\pm\infty` to the extreme finite values of the dtype.

    Log densities of impossible particles are :math:`-\infty`; clipping
    keeps later differences such as :math:`\phi' - \phi` from turning
    into ``NaN``.  ``NaN`` inputs are passed through unchanged.

    Args:
        log_values: Log densities or log weights.

    Returns:
        Array of the same shape with infinities clipped.
    """
    log_values = jnp.asarray(log_values)
    info = jnp.finfo(log_values.dtype)
    return jnp.clip(log_values, info.min, info.max)


def relative_weights(
    log_weights: Float[Array, ' num_particles'],
) -> Float[Array, ' num_particles']:
    """Exponentiate log weights relative to their maximum.

    The largest weight is exactly one, so the result never overflows.

    Args:
        log_weights: Unnormalized log importance weights.

    Returns:
        Non-negative weights with maximum one.
    """
    return jnp.exp(log_weights - jnp.max(log_weights))


def is_uniform(
    weights: Float[Array, ' num_particles'],
    eps: float = 1e-6,
) -> Bool[Array, '']:
    r"""Check whether all weights lie within :math:`(1 \pm \epsilon)` of
    their mean.

    Args:
        weights: Non-negative weights.
        eps: Relative tolerance.

    Returns:
        Scalar boolean array.
    """
    mean = jnp.mean(weights)
    return jnp.all(jnp.abs(weights - mean) <= eps * mean)
