# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Concrete random variables.

Parameters of a :class:`Distribution` are either constants or other
nodes.  Node parameters become parents, and their per-particle values
arrive through ``theta`` in the order they were passed.

- :class:`Uniform`, :class:`Normal`, :class:`Triangular`,
  :class:`Beta`, :class:`Gamma`, :class:`Exponential` are continuous
  priors; :class:`Binomial`, :class:`UniformInteger`,
  :class:`Bernoulli`, :class:`Discrete` are discrete ones.
- :class:`Mixture` mixes parameter-free distributions.
- :class:`Deterministic` computes a function of its parameters.
- :class:`Likelihood` and :class:`Condition` are observed by
  construction and contribute a log-likelihood only.
- :class:`Joint` carries several scalar nodes as one ``(J, n)``
  particle set so that correlated posteriors can be moved together.
"""

from collections.abc import Callable
from typing import Any

import jax.numpy as jnp
import jax.random as jr
import jax.scipy.stats as jstats
from jax.scipy.special import logsumexp
from jaxtyping import Array, Float

from abcjax import draws
from abcjax import stats as kernels
from abcjax.node import RandomVariable
from abcjax.types import PRNGKeyT, Theta
from abcjax.weights import log_normalize


class Distribution(RandomVariable):
    """Random variable with constant-or-node parameters.

    Args:
        *params: Distribution parameters; nodes among them become
            parents.
        **kwargs: Forwarded to :class:`~abcjax.node.RandomVariable`.
    """

    def __init__(self, *params: Any, **kwargs: Any):
        self.param_specs = params
        parents = [p for p in params if isinstance(p, RandomVariable)]
        super().__init__(*parents, **kwargs)

    def params(self, theta: Theta) -> tuple[Array, ...]:
        """Parameter values, constants broadcast against parent values."""
        parent_values = iter(theta)
        return tuple(
            next(parent_values)
            if isinstance(p, RandomVariable)
            else jnp.asarray(p)
            for p in self.param_specs
        )


class Uniform(Distribution):
    """Uniform distribution on ``[low, high]``."""

    def __init__(self, low: Any = 0.0, high: Any = 1.0, **kwargs: Any):
        super().__init__(low, high, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        low, high = self.params(theta)
        return draws.uniform(key, (num_particles,), low, high)

    def log_prior(self, values, theta):
        low, high = self.params(theta)
        return jstats.uniform.logpdf(values, low, high - low)


class Normal(Distribution):
    """Normal distribution with mean ``loc`` and stdev ``scale``."""

    def __init__(self, loc: Any = 0.0, scale: Any = 1.0, **kwargs: Any):
        super().__init__(loc, scale, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        loc, scale = self.params(theta)
        return loc + scale * jr.normal(key, (num_particles,))

    def log_prior(self, values, theta):
        loc, scale = self.params(theta)
        return jstats.norm.logpdf(values, loc, scale)


class Triangular(Distribution):
    """Triangular distribution on ``[low, high]`` peaking at ``mode``."""

    def __init__(
        self, low: Any = 0.0, high: Any = 1.0, mode: Any = None, **kwargs: Any
    ):
        if mode is None:
            super().__init__(low, high, **kwargs)
        else:
            super().__init__(low, high, mode, **kwargs)

    def _bounds(self, theta):
        params = self.params(theta)
        if len(params) == 2:
            low, high = params
            return low, high, 0.5 * (low + high)
        return params

    def sample_prior(self, key, theta, num_particles):
        low, high, mode = self._bounds(theta)
        return draws.triangular(key, (num_particles,), low, high, mode)

    def log_prior(self, values, theta):
        low, high, mode = self._bounds(theta)
        width = high - low
        rising = 2.0 * (values - low) / (width * (mode - low))
        falling = 2.0 * (high - values) / (width * (high - mode))
        density = jnp.where(values < mode, rising, falling)
        inside = (values >= low) & (values <= high)
        return jnp.where(inside & (density > 0), jnp.log(density), -jnp.inf)


class Beta(Distribution):
    r"""Beta distribution with shapes :math:`\alpha, \beta` on
    ``[low, high]``.
    """

    def __init__(
        self,
        alpha: Any,
        beta: Any,
        low: Any = 0.0,
        high: Any = 1.0,
        **kwargs: Any,
    ):
        super().__init__(alpha, beta, low, high, **kwargs)

    @classmethod
    def from_moments(
        cls, low: float, high: float, mean: float, stdev: float, **kwargs: Any
    ) -> 'Beta':
        """Beta on ``[low, high]`` with the given mean and stdev.

        Raises:
            ValueError: If ``mean`` is outside ``(low, high)`` or ``stdev``
                is too large for a beta distribution.
        """
        if not low < mean < high or stdev <= 0:
            raise ValueError(
                f'need low < mean < high and stdev > 0, got '
                f'({low}, {high}, {mean}, {stdev})'
            )
        m = (mean - low) / (high - low)
        v = (stdev / (high - low)) ** 2
        concentration = m * (1.0 - m) / v - 1.0
        if concentration <= 0:
            raise ValueError(
                f'stdev {stdev} too large for a beta on ({low}, {high})'
            )
        return cls(
            m * concentration, (1.0 - m) * concentration, low, high, **kwargs
        )

    def sample_prior(self, key, theta, num_particles):
        alpha, beta, low, high = self.params(theta)
        u = jr.beta(key, alpha, beta, (num_particles,))
        return low + (high - low) * u

    def log_prior(self, values, theta):
        alpha, beta, low, high = self.params(theta)
        return jstats.beta.logpdf(values, alpha, beta, low, high - low)


class Gamma(Distribution):
    """Gamma distribution with ``shape`` and ``scale`` on ``(loc, inf)``."""

    def __init__(
        self, shape: Any, scale: Any = 1.0, loc: Any = 0.0, **kwargs: Any
    ):
        super().__init__(shape, scale, loc, **kwargs)

    @classmethod
    def from_moments(
        cls, loc: float, mean: float, stdev: float, **kwargs: Any
    ) -> 'Gamma':
        """Gamma on ``(loc, inf)`` with the given mean and stdev.

        Raises:
            ValueError: If ``mean <= loc`` or ``stdev <= 0``.
        """
        if mean <= loc or stdev <= 0:
            raise ValueError(
                f'need mean > loc and stdev > 0, got ({loc}, {mean}, {stdev})'
            )
        m = mean - loc
        return cls((m / stdev) ** 2, stdev**2 / m, loc, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        shape, scale, loc = self.params(theta)
        return loc + scale * jr.gamma(key, shape, (num_particles,))

    def log_prior(self, values, theta):
        shape, scale, loc = self.params(theta)
        return jstats.gamma.logpdf(values, shape, loc, scale)


class Exponential(Distribution):
    """Exponential distribution with mean ``scale`` on ``(loc, inf)``."""

    def __init__(self, scale: Any = 1.0, loc: Any = 0.0, **kwargs: Any):
        super().__init__(scale, loc, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        scale, loc = self.params(theta)
        return loc + scale * jr.exponential(key, (num_particles,))

    def log_prior(self, values, theta):
        scale, loc = self.params(theta)
        return jstats.expon.logpdf(values, loc, scale)


class Binomial(Distribution):
    """Number of successes in ``n`` trials with success probability ``p``.

    Moves draw independent proposals from the prior.
    """

    def __init__(self, n: Any, p: Any = 0.5, **kwargs: Any):
        super().__init__(n, p, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        n, p = self.params(theta)
        return jr.binomial(key, n, p, (num_particles,))

    def log_prior(self, values, theta):
        n, p = self.params(theta)
        integral = values == jnp.round(values)
        return jnp.where(integral, jstats.binom.logpmf(values, n, p), -jnp.inf)

    def propose(self, key, values, theta):
        proposed = self.sample_prior(key, theta, values.shape[0])
        proposed = proposed.astype(values.dtype)
        log_ratio = self.log_prior(values, theta) - self.log_prior(
            proposed, theta
        )
        return proposed, log_ratio


class UniformInteger(Distribution):
    """Uniform distribution on the integers ``{low, ..., high}``."""

    def __init__(self, low: Any, high: Any, **kwargs: Any):
        super().__init__(low, high, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        low, high = self.params(theta)
        return jr.randint(key, (num_particles,), low, high + 1)

    def log_prior(self, values, theta):
        low, high = self.params(theta)
        inside = (values >= low) & (values <= high)
        inside = inside & (values == jnp.round(values))
        return jnp.where(inside, -jnp.log(high - low + 1.0), -jnp.inf)

    def propose(self, key, values, theta):
        """Symmetric uniform proposal over the whole range."""
        proposed = self.sample_prior(key, theta, values.shape[0])
        return proposed.astype(values.dtype), jnp.zeros(values.shape[0])


class Bernoulli(Distribution):
    """``1`` with probability ``p``, else ``0``."""

    def __init__(self, p: Any = 0.5, **kwargs: Any):
        super().__init__(p, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        (p,) = self.params(theta)
        return jr.bernoulli(key, p, (num_particles,)).astype(jnp.int32)

    def log_prior(self, values, theta):
        (p,) = self.params(theta)
        inside = (values == 0) | (values == 1)
        return jnp.where(inside, jstats.bernoulli.logpmf(values, p), -jnp.inf)

    def propose(self, key, values, theta):
        """Flip every value; the proposal is symmetric."""
        return (1 - values).astype(values.dtype), jnp.zeros(values.shape[0])


class Discrete(Distribution):
    """Categorical distribution on ``{0, ..., K-1}``.

    Args:
        probs: Category probabilities (not necessarily normalized),
            shape ``(K,)``, or a node with ``(J, K)`` values.
    """

    def __init__(self, probs: Any, **kwargs: Any):
        super().__init__(probs, **kwargs)

    def _log_probs(self, theta, num_particles):
        (probs,) = self.params(theta)
        probs = jnp.broadcast_to(probs, (num_particles, probs.shape[-1]))
        return jnp.log(probs / jnp.sum(probs, axis=-1, keepdims=True))

    def sample_prior(self, key, theta, num_particles):
        return jr.categorical(key, self._log_probs(theta, num_particles))

    def log_prior(self, values, theta):
        log_probs = self._log_probs(theta, values.shape[0])
        num_categories = log_probs.shape[-1]
        inside = (values >= 0) & (values < num_categories)
        idx = jnp.clip(values, 0, num_categories - 1).astype(jnp.int32)
        picked = jnp.take_along_axis(log_probs, idx[:, None], axis=-1)[:, 0]
        return jnp.where(inside, picked, -jnp.inf)

    def propose(self, key, values, theta):
        """Symmetric uniform proposal over all categories."""
        (probs,) = self.params(theta)
        proposed = draws.discrete_uniform(
            key, probs.shape[-1], (values.shape[0],)
        )
        return proposed.astype(values.dtype), jnp.zeros(values.shape[0])


class Mixture(RandomVariable):
    r"""Weighted mixture of parameter-free distributions.

    .. math::

        p(x) = \sum_k \pi_k \, p_k(x)

    Components are templates: they must not depend on other nodes and
    are never part of the model graph themselves.  Each move proposes,
    with equal probability, either a Gaussian random walk or an
    independent draw from the mixture, so that discrete components can
    move too.

    Args:
        *components: Distributions with constant parameters.
        weights: Component weights :math:`\pi_k`, not necessarily
            normalized; equal when ``None``.
        **kwargs: Forwarded to :class:`~abcjax.node.RandomVariable`.
    """

    def __init__(
        self, *components: Distribution, weights: Any = None, **kwargs: Any
    ):
        if not components:
            raise ValueError('Mixture needs at least one component')
        for component in components:
            if component.parents:
                raise ValueError(
                    f'mixture component {component.name} has parents'
                )
        if weights is None:
            weights = jnp.ones(len(components))
        weights = jnp.asarray(weights, dtype=float)
        if weights.shape != (len(components),):
            raise ValueError(
                f'expected {len(components)} mixture weights, '
                f'got shape {weights.shape}'
            )
        self.mixture_components = tuple(components)
        self.log_weights, _ = log_normalize(jnp.log(weights))
        super().__init__(**kwargs)

    def sample_prior(self, key, theta, num_particles):
        pick_key, *component_keys = jr.split(
            key, len(self.mixture_components) + 1
        )
        picks = jr.categorical(
            pick_key, self.log_weights, shape=(num_particles,)
        )
        values = jnp.stack(
            [
                component.sample_prior(k, (), num_particles)
                for component, k in zip(
                    self.mixture_components, component_keys
                )
            ]
        )
        return jnp.take_along_axis(values, picks[None, :], axis=0)[0]

    def log_prior(self, values, theta):
        log_densities = jnp.stack(
            [c.log_prior(values, ()) for c in self.mixture_components]
        )
        return logsumexp(log_densities + self.log_weights[:, None], axis=0)

    def propose(self, key, values, theta):
        walk_key, draw_key, pick_key = jr.split(key, 3)
        walked, _ = super().propose(walk_key, values, theta)
        if jnp.issubdtype(values.dtype, jnp.integer):
            walked = jnp.round(walked)
        walked = walked.astype(values.dtype)
        drawn = self.sample_prior(draw_key, theta, values.shape[0])
        drawn = drawn.astype(values.dtype)
        independent = jr.bernoulli(pick_key, 0.5, (values.shape[0],))
        proposed = jnp.where(independent, drawn, walked)
        log_ratio = jnp.where(
            independent,
            self.log_prior(values, theta) - self.log_prior(drawn, theta),
            0.0,
        )
        return proposed, log_ratio


class Deterministic(Distribution):
    """Deterministic function of its parameters.

    Args:
        fn: Vectorized function of the parameter values.
        *params: Constants or nodes passed to ``fn``.
    """

    def __init__(self, fn: Callable[..., Array], *params: Any, **kwargs: Any):
        self.fn = fn
        super().__init__(*params, **kwargs)

    def sample_prior(self, key, theta, num_particles):
        value = jnp.asarray(self.fn(*self.params(theta)))
        if self.parents:
            return value
        # constant parameters give one value for all particles
        return jnp.broadcast_to(value, (num_particles,) + value.shape)

    def log_prior(self, values, theta):
        return jnp.zeros(values.shape[0])

    def propose(self, key, values, theta):
        raise TypeError(f'{self.name} is deterministic and cannot be moved')


class Likelihood(Distribution):
    """Observed node defined by a log-likelihood of its parameters.

    Args:
        log_fn: Vectorized function of the parameter values returning
            per-particle log-likelihoods.
        *params: Constants or nodes passed to ``log_fn``.
    """

    def __init__(
        self, log_fn: Callable[..., Array], *params: Any, **kwargs: Any
    ):
        self.log_fn = log_fn
        super().__init__(*params, **kwargs)
        self.observed = True

    def observed_values(self, num_particles):
        return jnp.zeros(num_particles)

    def log_likelihood(self, values, theta):
        log_lik = jnp.asarray(self.log_fn(*self.params(theta)), dtype=float)
        return jnp.broadcast_to(log_lik, values.shape[:1])


class Condition(Likelihood):
    r"""Hard constraint: log-likelihood 0 where ``predicate`` holds and
    :math:`-\infty` elsewhere.
    """

    def __init__(
        self, predicate: Callable[..., Array], *params: Any, **kwargs: Any
    ):
        self.predicate = predicate
        super().__init__(self._log_indicator, *params, **kwargs)

    def _log_indicator(self, *args):
        return jnp.where(self.predicate(*args), 0.0, -jnp.inf)


class Joint(RandomVariable):
    r"""Several scalar nodes carried as one ``(J, n)`` particle set.

    Prior draws are made component by component, so a component may
    depend on earlier ones.  Moves use a Gaussian random walk whose
    covariance is the weighted particle covariance scaled by
    :math:`2.38^2 / n`.

    Args:
        *components: Scalar-valued nodes in dependency order.
        **kwargs: Forwarded to :class:`~abcjax.node.RandomVariable`.
    """

    event_ndim = 1

    def __init__(self, *components: RandomVariable, **kwargs: Any):
        if not components:
            raise ValueError('Joint needs at least one component')
        for i, component in enumerate(components):
            later = set(components[i + 1:])
            if any(parent in later for parent in component.parents):
                raise ValueError(
                    f'component {component.name} depends on a later component'
                )
        self._components = tuple(components)
        super().__init__(**kwargs)

    @property
    def components(self) -> tuple[RandomVariable, ...]:
        return self._components

    @property
    def children(self) -> tuple[RandomVariable, ...]:
        inner = set(self._components)
        children = []
        for component in self._components:
            for child in component.children:
                if child not in inner and child not in children:
                    children.append(child)
        return tuple(children)

    def _prior_draw(self, evaluation):
        columns = []
        for component in self._components:
            values = component.simulate(evaluation)
            if values.ndim != 1:
                raise ValueError(
                    f'Joint component {component.name} is not scalar'
                )
            evaluation.env[component] = values
            columns.append(values)
        return jnp.stack(columns, axis=1), None

    def bind(self, evaluation, values):
        evaluation.env[self] = values
        for i, component in enumerate(self._components):
            evaluation.env[component] = values[:, i]

    def prior_density(self, evaluation, values):
        log_prior = jnp.zeros(values.shape[0])
        for i, component in enumerate(self._components):
            log_prior = log_prior + component.log_prior(
                values[:, i], evaluation.theta(component)
            )
        return log_prior

    def log_prior(self, values, theta):
        raise TypeError('Joint prior density needs an evaluation context')

    def marginal(self, node: RandomVariable) -> Array:
        if node is self:
            return self.samples
        if node not in self._components:
            raise ValueError(f'{self.name} does not carry {node.name}')
        return self.samples[:, self._components.index(node)]

    def propose(
        self, key: PRNGKeyT, values: Array, theta: Theta
    ) -> tuple[Array, Float[Array, ' J']]:
        num_particles, dim = values.shape
        w = jnp.ones(num_particles) if self.weights is None else self.weights
        w = w / jnp.sum(w)
        center = kernels.mean(values, w)
        deviations = values - center
        cov = jnp.einsum('j,jd,je->de', w, deviations, deviations)
        jitter = 1e-9 * jnp.maximum(jnp.trace(cov) / dim, 1.0)
        cov = (2.38**2 / dim) * cov + jitter * jnp.eye(dim)
        chol = jnp.linalg.cholesky(cov)
        noise = jr.normal(key, (num_particles, dim))
        return values + noise @ chol.T, jnp.zeros(num_particles)
