# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Particle-based approximate Bayesian computation (ABC-SMC) in JAX."""

from importlib.metadata import PackageNotFoundError as _PackageNotFoundError
from importlib.metadata import version as _version

from blackjax.smc.resampling import (
    multinomial,
    residual,
    stratified,
    systematic,
)

from abcjax.containers import (
    Stats,
    Target,
    UpdateCounters,
    UpdateOptions,
    UpdateSummary,
)
from abcjax.diagnostics import (
    acceptance_rate,
    particle_diversity,
    weighted_mean,
    weighted_quantile,
    weighted_variance,
)
from abcjax.distributions import (
    Bernoulli,
    Beta,
    Binomial,
    Condition,
    Deterministic,
    Discrete,
    Distribution,
    Exponential,
    Gamma,
    Joint,
    Likelihood,
    Mixture,
    Normal,
    Triangular,
    Uniform,
    UniformInteger,
)
from abcjax.node import RandomVariable
from abcjax.stats import ess, ks2, ks2_test
from abcjax.update import update
from abcjax.weights import log_normalize, normalize

try:
    __version__ = _version('abcjax')
except _PackageNotFoundError:
    __version__ = '0.0.0'

__all__ = [
    'Bernoulli',
    'Beta',
    'Binomial',
    'Condition',
    'Deterministic',
    'Discrete',
    'Distribution',
    'Exponential',
    'Gamma',
    'Joint',
    'Likelihood',
    'Mixture',
    'Normal',
    'RandomVariable',
    'Stats',
    'Target',
    'Triangular',
    'Uniform',
    'UniformInteger',
    'UpdateCounters',
    'UpdateOptions',
    'UpdateSummary',
    '__version__',
    'acceptance_rate',
    'ess',
    'ks2',
    'ks2_test',
    'log_normalize',
    'multinomial',
    'normalize',
    'particle_diversity',
    'residual',
    'stratified',
    'systematic',
    'update',
    'weighted_mean',
    'weighted_quantile',
    'weighted_variance',
]
