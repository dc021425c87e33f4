# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Shared test fixtures for abcjax."""

import jax
import jax.numpy as jnp
import jax.random as jr
import pytest

import abcjax
from abcjax.distributions import Condition, Normal, Uniform


@pytest.fixture
def package():
    """Return the top-level package module for introspection."""
    return abcjax


@pytest.fixture
def key():
    """Fixed JAX PRNG key for reproducibility."""
    return jr.PRNGKey(42)


@pytest.fixture
def threshold_model():
    """Uniform prior conditioned on exceeding 0.9.

    Model:
        x ~ U(0, 1)
        x > 0.9 observed

    The posterior is U(0.9, 1) with mean 0.95.  Returns ``(x, condition)``.
    """
    x = Uniform(0.0, 1.0, key=jr.PRNGKey(0), name='x', stats=True)
    condition = Condition(lambda v: v > 0.9, x, name='x_gt_0.9')
    return x, condition


@pytest.fixture
def normal_model():
    """Conjugate normal model with a single observation.

    Model:
        mu ~ N(0, 1)
        y  ~ N(mu, 1),  y = 1 observed

    The posterior is N(0.5, 0.5).  Returns ``(mu, y)``.
    """
    mu = Normal(0.0, 1.0, key=jr.PRNGKey(1), name='mu', stats=True)
    y = Normal(mu, 1.0, name='y').observe(jnp.array(1.0))
    return mu, y


# Configure JAX to use 64-bit floats for higher precision in tests.
jax.config.update('jax_enable_x64', True)
