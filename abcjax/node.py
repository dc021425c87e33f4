# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Random variables carrying a weighted particle set.

A :class:`RandomVariable` is a node in a directed model graph.  Besides
its parents and children it owns a particle approximation of its
posterior:

- ``samples`` of shape ``(J, ...)``;
- linear-space ``weights`` of shape ``(J,)`` or ``None`` when uniform;
- the per-particle log-posterior cache ``log_posterior`` (:math:`\phi`);
- ``index_map``, a lineage id per particle that is copied by
  resampling and renewed by accepted moves;
- ``log_evidence``, the log marginal-likelihood estimate accumulated
  by reweights since the last prior draw.

The three kernel operations are :meth:`~RandomVariable.sample`
(prior draw or resample), :meth:`~RandomVariable.weight` (importance
reweight by the likelihood of the observed descendants) and
:meth:`~RandomVariable.move` (Metropolis-Hastings sweep).  Particle
arrays are immutable JAX arrays; every operation replaces them.

Subclasses describe a distribution through four hooks:

- ``sample_prior(key, theta, num_particles)``
- ``log_prior(values, theta)``
- ``log_likelihood(values, theta)`` (defaults to ``log_prior``)
- ``propose(key, values, theta) -> (proposed, log_ratio)``

where ``theta`` is a tuple with one ``(J, ...)`` array per parent.
"""

import itertools
import logging
import numbers
from typing import Any, Optional

import jax
import jax.numpy as jnp
import jax.random as jr
from blackjax.smc.resampling import multinomial
from jaxtyping import Array, Float, Int

from abcjax import draws, graph
from abcjax import stats as kernels
from abcjax.containers import Stats, Target, UpdateSummary
from abcjax.diagnostics import weighted_quantile
from abcjax.errors import (
    CannotMoveBeforeReweight,
    InvalidSampleSize,
    InvalidWeights,
    MissingObservedDescendants,
    MissingSamples,
    NaNWeight,
    RedundantResample,
    RedundantReweight,
    SizeMismatch,
)
from abcjax.types import PRNGKeyT, Theta
from abcjax.update import update as run_update
from abcjax.weights import (
    finite,
    is_uniform,
    log_normalize,
    normalize,
    relative_weights,
)

logger = logging.getLogger(__name__)

_ids = itertools.count()


def _check_weights(weights: Array, num_particles: int) -> Array:
    weights = jnp.asarray(weights, dtype=float)
    if weights.shape != (num_particles,):
        raise SizeMismatch(
            f'expected {num_particles} weights, got shape {weights.shape}'
        )
    if bool(jnp.any(jnp.isnan(weights))):
        raise NaNWeight('NaN in weights')
    if bool(jnp.any(weights < 0)) or not bool(jnp.sum(weights) > 0):
        raise InvalidWeights('weights must be non-negative with a positive sum')
    return weights


def _is_sample_size(source: Any) -> bool:
    # python and numpy integers, or 0-d integer arrays; never booleans
    if isinstance(source, bool):
        return False
    if isinstance(source, numbers.Integral):
        return True
    return jnp.ndim(source) == 0 and jnp.issubdtype(
        jnp.result_type(source), jnp.integer
    )


def _check_log_densities(name: str, *log_densities: Array) -> None:
    for log_density in log_densities:
        if bool(jnp.any(jnp.isnan(log_density))):
            raise NaNWeight(f'NaN log-density while weighting {name}')


class RandomVariable:
    """Base class of all model nodes.

    Args:
        *parents: Parent nodes; their per-particle values form ``theta``.
        key: PRNG key owned by the node.  Derived from a global node
            counter when ``None``, so runs are reproducible.
        name: Display name used in errors and log messages.
        stats: Whether to keep operation counters in ``self.stats``.
        history: Number of recorded move pairs ``M`` used by
            :attr:`mks`; ``2 * J`` when ``None``.
    """

    weighted_prior = False
    """Whether ``sample_prior`` returns ``(values, log_weights)``."""

    event_ndim = 0
    """Number of trailing axes of a single value."""

    def __init__(
        self,
        *parents: 'RandomVariable',
        key: Optional[PRNGKeyT] = None,
        name: Optional[str] = None,
        stats: bool = False,
        history: Optional[int] = None,
    ):
        self.id = next(_ids)
        self.parents = tuple(parents)
        self._children: list[RandomVariable] = []
        for parent in self.parents:
            parent._children.append(self)
        if name is None:
            name = f'{type(self).__name__.lower()}_{self.id}'
        self.name = name
        self.key = jr.fold_in(jr.PRNGKey(0), self.id) if key is None else key
        self.observed = False
        self.value: Any = None
        self.target: Optional[Target] = None
        self.stats: Optional[Stats] = Stats() if stats else None
        self.history_size = history
        self.reset()

    def __repr__(self) -> str:
        return f'{type(self).__name__}(name={self.name!r}, J={self.J})'

    @property
    def children(self) -> tuple['RandomVariable', ...]:
        return tuple(self._children)

    @property
    def components(self) -> tuple['RandomVariable', ...]:
        """Nodes whose values this node carries (itself for plain nodes)."""
        return (self,)

    def next_key(self) -> PRNGKeyT:
        """Split off a fresh key from the node's key."""
        self.key, sub = jr.split(self.key)
        return sub

    def reset(self) -> None:
        """Drop all particles and diagnostics."""
        self.J = 0
        self.samples: Optional[Array] = None
        self.weights: Optional[Float[Array, ' J']] = None
        self.log_posterior: Optional[Float[Array, ' J']] = None
        self.index_map: Optional[Int[Array, ' J']] = None
        self.exponent: Optional[float] = None
        self.log_evidence = 0.0
        self._next_origin = 0
        self._reset_history()
        self.invalidate()

    def invalidate(self) -> None:
        """Clear cached diagnostics after the particles changed."""
        self._wj_sum = None
        self._ess = None
        self._essu = None
        self._mks = None

    def _count(self, **increments: int) -> None:
        if self.stats is None:
            return
        self.stats = self.stats._replace(
            **{k: getattr(self.stats, k) + v for k, v in increments.items()}
        )

    # --- Distribution hooks ------------------------------------------------

    def sample_prior(self, key: PRNGKeyT, theta: Theta, num_particles: int):
        """Draw ``num_particles`` prior values given parent values."""
        raise NotImplementedError(
            f'{type(self).__name__} does not define a prior sampler'
        )

    def log_prior(self, values: Array, theta: Theta) -> Float[Array, ' J']:
        """Per-particle prior log-density of ``values``."""
        raise NotImplementedError(
            f'{type(self).__name__} does not define a prior density'
        )

    def log_likelihood(self, values: Array, theta: Theta) -> Float[Array, ' J']:
        """Per-particle log-likelihood of observed ``values``.

        Axes of ``values`` beyond the particle axis and the
        ``event_ndim`` axes of a single value hold i.i.d. observations;
        their log-densities are summed.
        """
        batch_ndim = values.ndim - 1 - self.event_ndim
        if batch_ndim <= 0:
            return self.log_prior(values, theta)
        event_shape = values.shape[values.ndim - self.event_ndim:]
        flat = values.reshape((values.shape[0], -1) + event_shape)
        per_observation = jax.vmap(
            lambda v: self.log_prior(v, theta), in_axes=1
        )(flat)
        return jnp.sum(per_observation, axis=0)

    def propose(
        self, key: PRNGKeyT, values: Array, theta: Theta
    ) -> tuple[Array, Float[Array, ' J']]:
        r"""Gaussian random-walk proposal.

        The step size is the weighted standard deviation of the current
        particles per coordinate.  The proposal is symmetric, so the log
        proposal ratio :math:`\log q(x \mid y) - \log q(y \mid x)` is
        zero.

        Returns:
            A tuple ``(proposed, log_ratio)``.
        """
        center = kernels.mean(values, self.weights)
        variance = kernels.mean((values - center) ** 2, self.weights)
        scale = jnp.sqrt(variance)
        scale = jnp.where(scale > 0, scale, 1e-3)
        proposed = values + scale * jr.normal(key, values.shape)
        return proposed, jnp.zeros(values.shape[0])

    # --- Evaluation protocol (see abcjax.graph) ----------------------------

    def _prior_draw(
        self, evaluation: graph.Evaluation
    ) -> tuple[Array, Optional[Float[Array, ' J']]]:
        theta = evaluation.theta(self)
        out = self.sample_prior(
            evaluation.next_key(), theta, evaluation.num_particles
        )
        if self.weighted_prior:
            values, log_weights = out
            return jnp.asarray(values), jnp.asarray(log_weights)
        return jnp.asarray(out), None

    def simulate(self, evaluation: graph.Evaluation) -> Array:
        """Unweighted prior values given the parent values in scope."""
        values, log_weights = self._prior_draw(evaluation)
        if log_weights is not None:
            idx = draws.discrete(
                evaluation.next_key(),
                relative_weights(finite(log_weights)),
                evaluation.num_particles,
            )
            values = values[idx]
        return values

    def bind(self, evaluation: graph.Evaluation, values: Array) -> None:
        evaluation.env[self] = values

    def prior_density(
        self, evaluation: graph.Evaluation, values: Array
    ) -> Float[Array, ' J']:
        return self.log_prior(values, evaluation.theta(self))

    def draw(self, key: PRNGKeyT, num_samples: int) -> Array:
        """Draw particle values according to the current weights."""
        if self.weights is None:
            idx = draws.discrete_uniform(key, self.J, (num_samples,))
        else:
            idx = draws.discrete(key, self.weights, num_samples)
        return self.samples[idx]

    def observed_values(self, num_particles: int) -> Array:
        """Observed value per particle."""
        if isinstance(self.value, RandomVariable):
            if self.value.J != num_particles:
                raise SizeMismatch(
                    f'{self.name} is observed as {self.value.name} with '
                    f'{self.value.J} samples, expected {num_particles}'
                )
            return self.value.samples
        value = jnp.asarray(self.value)
        return jnp.broadcast_to(value, (num_particles,) + value.shape)

    def marginal(self, node: 'RandomVariable') -> Array:
        """Particle values of ``node`` carried by this node."""
        if node is not self:
            raise ValueError(f'{self.name} does not carry {node.name}')
        return self.samples

    # --- Kernel operations -------------------------------------------------

    def sample(
        self,
        source: Any = None,
        *,
        resampling_fn=multinomial,
    ) -> 'RandomVariable':
        """Draw, adopt or resample particles.

        - ``sample(J)`` draws ``J`` values from the prior.
        - ``sample(array)`` adopts the values (uniform weights).
        - ``sample(node)`` clones the samples and weights of ``node``.
        - ``sample()`` resamples the current particles by their weights.

        Args:
            source: Sample size, values or source node.
            resampling_fn: Resampling scheme used by ``sample()``.

        Returns:
            ``self``.

        Raises:
            InvalidSampleSize: If the size is not positive or the array
                is empty.
            MissingSamples: If there is nothing to resample or clone.
            RedundantResample: If resampling a single particle.
            InvalidWeights: If a weighted prior yields no positive weight.
            NaNWeight: If a weighted prior yields NaN log weights.
        """
        if source is None:
            return self._resample(resampling_fn)
        if isinstance(source, RandomVariable):
            if source.J == 0:
                raise MissingSamples(f'{source.name} has no samples to copy')
            return self._adopt(source.samples, source.weights)
        if _is_sample_size(source):
            num_particles = int(source)
            if num_particles <= 0:
                raise InvalidSampleSize(
                    f'sample size must be positive, got {num_particles}'
                )
            evaluation = graph.Evaluation(self, self.next_key(), num_particles)
            values, log_weights = self._prior_draw(evaluation)
            weights = None
            if log_weights is not None:
                if bool(jnp.any(jnp.isnan(log_weights))):
                    raise NaNWeight(f'NaN prior log weight in {self.name}')
                if bool(jnp.all(log_weights == -jnp.inf)):
                    raise InvalidWeights(
                        f'all prior weights of {self.name} are 0'
                    )
                weights = relative_weights(finite(log_weights))
            return self._adopt(values, weights)
        values = jnp.asarray(source)
        if values.ndim == 0 or values.shape[0] == 0:
            raise InvalidSampleSize('cannot sample from an empty array')
        return self._adopt(values, None)

    def _adopt(
        self, values: Array, weights: Optional[Array]
    ) -> 'RandomVariable':
        num_particles = values.shape[0]
        if weights is not None:
            weights = _check_weights(weights, num_particles)
        self.J = num_particles
        self.samples = values
        self.weights = weights
        self.log_posterior = None
        self.exponent = None
        self.log_evidence = 0.0
        self.index_map = jnp.arange(num_particles)
        self._next_origin = num_particles
        self._reset_history()
        self.invalidate()
        self._count(samples=1, weights=int(weights is not None))
        return self

    def _resample(self, resampling_fn) -> 'RandomVariable':
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples to resample')
        if self.J == 1:
            raise RedundantResample(f'{self.name} has a single sample')
        key = self.next_key()
        if self.weighted():
            idx = resampling_fn(key, normalize(jnp.log(self.weights)), self.J)
        else:
            idx = draws.discrete_uniform(key, self.J, (self.J,))
        self.samples = self.samples[idx]
        self.index_map = self.index_map[idx]
        if self.log_posterior is not None:
            self.log_posterior = self.log_posterior[idx]
        self.weights = None
        self.invalidate()
        self._count(resamples=1)
        logger.debug('resampled %s: essu=%.1f', self.name, self.essu)
        return self

    def weight(self, exponent: Any = 1.0) -> 'RandomVariable':
        r"""Reweight particles by the likelihood of observed descendants.

        With :math:`\phi_j` the cached log-posterior,

        .. math::

            \phi'_j = \log p(x_j) + r \log p(y \mid x_j), \qquad
            w'_j = w_j \exp(\phi'_j - \phi_j)

        where :math:`\phi_j` defaults to the prior term on the first
        call.  The log-normalizer of :math:`W_j \exp(\phi'_j - \phi_j)`,
        with :math:`W_j` the normalized previous weights, is added to
        ``log_evidence``.  Passing an array instead of an exponent sets
        the weights directly.

        Args:
            exponent: Likelihood exponent :math:`r \in [0, 1]`, or an
                array of ``J`` non-negative weights.

        Returns:
            ``self``.

        Raises:
            MissingSamples: If there are no particles.
            RedundantReweight: If there is a single particle.
            MissingObservedDescendants: If nothing downstream is observed.
            UnsupportedGraph: If observed descendants share ancestry.
            NaNWeight: If a log-density is NaN.
            InvalidWeights: If every particle gets zero weight.
        """
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples to weight')
        if jnp.ndim(exponent) > 0:
            self.weights = _check_weights(exponent, self.J)
            self.invalidate()
            self._count(weights=1)
            return self
        exponent = float(exponent)
        if not 0.0 <= exponent <= 1.0:
            raise ValueError(f'weight exponent must be in [0, 1], got {exponent}')
        if self.J == 1:
            raise RedundantReweight(f'{self.name} has a single sample')
        observed = self._observed_descendants()
        log_prior, log_likelihood = graph.log_densities(
            self, self.samples, key=self.next_key(), observed=observed
        )
        _check_log_densities(self.name, log_prior, log_likelihood)
        impossible = jnp.isneginf(log_prior)
        if exponent > 0:
            impossible = impossible | jnp.isneginf(log_likelihood)
        log_prior = finite(log_prior)
        log_posterior = finite(log_prior + exponent * finite(log_likelihood))
        previous = log_prior if self.log_posterior is None else self.log_posterior
        # increments start from normalized weights so that the
        # log-normalizer is the evidence increment
        log_weights = finite(log_posterior - previous)
        if self.weights is None:
            log_weights = log_weights - jnp.log(self.J)
        else:
            log_weights = jnp.log(self.weights / self.wj_sum) + log_weights
        log_weights = jnp.where(impossible, -jnp.inf, log_weights)
        if bool(jnp.all(log_weights == -jnp.inf)):
            raise InvalidWeights(f'all particles of {self.name} have zero weight')
        log_weights, log_increment = log_normalize(log_weights)
        self.log_evidence += float(log_increment)
        self.weights = relative_weights(log_weights)
        self.log_posterior = log_posterior
        self.exponent = exponent
        self.invalidate()
        self._count(reweights=1)
        return self

    def move(self, exponent: Optional[float] = None) -> int:
        r"""One Metropolis-Hastings sweep over all particles.

        Each particle proposes :math:`y_j` and accepts with probability

        .. math::

            \min\left(1, q \, e^{\phi_r(y_j) - \phi_r(x_j)}\right), \qquad
            \phi_r(x) = \log p(x) + r \log p(y \mid x)

        Accepted particles get a fresh lineage id.  The cached
        log-posterior stays tempered at the exponent of the last
        reweight, whatever exponent the sweep targets.

        Args:
            exponent: Likelihood exponent :math:`r \in [0, 1]` targeted by
                the sweep; the exponent of the last reweight when
                ``None``.

        Returns:
            Number of accepted proposals.

        Raises:
            MissingSamples: If there are no particles.
            CannotMoveBeforeReweight: If the log-posterior cache is empty.
            MissingObservedDescendants: If nothing downstream is observed.
            NaNWeight: If a log-density is NaN.
        """
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples to move')
        if self.log_posterior is None:
            raise CannotMoveBeforeReweight(f'weight {self.name} before moving')
        if exponent is None:
            exponent = self.exponent
        exponent = float(exponent)
        if not 0.0 <= exponent <= 1.0:
            raise ValueError(f'move exponent must be in [0, 1], got {exponent}')
        observed = self._observed_descendants()
        eval_key, propose_key, accept_key = jr.split(self.next_key(), 3)
        evaluation = graph.Evaluation(self, eval_key, self.J)
        proposed, log_ratio = self.propose(
            propose_key, self.samples, evaluation.theta(self)
        )
        proposed = jnp.asarray(proposed)
        log_prior, log_likelihood = graph.log_densities(
            self, proposed, observed=observed, evaluation=evaluation
        )
        _check_log_densities(self.name, log_prior, log_likelihood)
        log_prior = finite(log_prior)
        log_likelihood = finite(log_likelihood)
        log_posterior = finite(log_prior + exponent * log_likelihood)
        current = self.log_posterior
        if exponent != self.exponent:
            # re-temper the current particles against the same parent draws
            current = self._tempered(
                self.samples, exponent, observed, evaluation.fork()
            )
        log_alpha = finite(log_ratio) + log_posterior - current
        u = draws.uniform(accept_key, (self.J,))
        accept = jnp.log(u) < log_alpha
        mask = accept.reshape((self.J,) + (1,) * (self.samples.ndim - 1))
        if exponent != self.exponent:
            log_posterior = finite(log_prior + self.exponent * log_likelihood)

        before = self._mixing_values()
        self.samples = jnp.where(mask, proposed, self.samples)
        self.log_posterior = jnp.where(accept, log_posterior, self.log_posterior)
        origins = self._next_origin + jnp.arange(self.J)
        self.index_map = jnp.where(accept, origins, self.index_map)
        self._next_origin += self.J
        self._record_moves(before, self._mixing_values())

        accepts = int(jnp.sum(accept))
        self.invalidate()
        self._count(moves=1, proposals=self.J, accepts=accepts)
        return accepts

    def _tempered(
        self,
        values: Array,
        exponent: float,
        observed: list['RandomVariable'],
        evaluation: graph.Evaluation,
    ) -> Float[Array, ' J']:
        log_prior, log_likelihood = graph.log_densities(
            self, values, observed=observed, evaluation=evaluation
        )
        _check_log_densities(self.name, log_prior, log_likelihood)
        return finite(finite(log_prior) + exponent * finite(log_likelihood))

    def _observed_descendants(self) -> list['RandomVariable']:
        observed = graph.observed_descendants(self)
        if not observed:
            raise MissingObservedDescendants(
                f'{self.name} has no observed descendants'
            )
        graph.check_shared_ancestry(self, observed)
        return observed

    # --- Move history ------------------------------------------------------

    @property
    def M(self) -> int:
        """Capacity of the move history."""
        return self.history_size or 2 * self.J

    def _reset_history(self) -> None:
        self._history_from: Optional[Array] = None
        self._history_to: Optional[Array] = None
        self._history_pos = 0
        self._history_count = 0

    def _mixing_values(self) -> Array:
        # non-scalar particles are tracked through their log-posterior
        if self.samples.ndim == 1:
            return self.samples
        return self.log_posterior

    def _record_moves(self, before: Array, after: Array) -> None:
        capacity = self.M
        if self._history_from is None:
            self._history_from = jnp.zeros(capacity, dtype=before.dtype)
            self._history_to = jnp.zeros(capacity, dtype=after.dtype)
        n = before.shape[0]
        if n >= capacity:
            self._history_from = before[-capacity:]
            self._history_to = after[-capacity:]
            self._history_pos = 0
            self._history_count = capacity
            return
        idx = (self._history_pos + jnp.arange(n)) % capacity
        self._history_from = self._history_from.at[idx].set(before)
        self._history_to = self._history_to.at[idx].set(after)
        self._history_pos = (self._history_pos + n) % capacity
        self._history_count = min(self._history_count + n, capacity)

    # --- Diagnostics -------------------------------------------------------

    @property
    def wj_sum(self) -> float:
        """Sum of weights (``J`` when uniform)."""
        if self._wj_sum is None:
            if self.weights is None:
                self._wj_sum = float(self.J)
            else:
                self._wj_sum = float(jnp.sum(self.weights))
        return self._wj_sum

    def weighted(self, eps: float = 1e-6) -> bool:
        """Whether any weight differs from the mean by more than ``eps``."""
        if self.weights is None:
            return False
        return not bool(is_uniform(self.weights, eps))

    def _lineage_weights(self, weights: Array) -> Array:
        # weights summed per lineage id; sorted-indicator grouping
        order = jnp.argsort(self.index_map)
        sorted_ids = self.index_map[order]
        starts = jnp.concatenate(
            [jnp.array([True]), sorted_ids[1:] != sorted_ids[:-1]]
        )
        groups = jnp.cumsum(starts) - 1
        return jax.ops.segment_sum(
            weights[order], groups, num_segments=self.J
        )

    @property
    def ess(self) -> float:
        """Effective sample size with weights aggregated by lineage."""
        if self.J == 0:
            return 0.0
        if self._ess is None:
            if self.weights is None:
                self._ess = self.essu
            else:
                self._ess = float(
                    kernels.ess(self._lineage_weights(self.weights))
                )
        return self._ess

    @property
    def essu(self) -> float:
        """Effective sample size of the lineage counts, ignoring weights."""
        if self.J == 0:
            return 0.0
        if self._essu is None:
            self._essu = float(
                kernels.ess(self._lineage_weights(jnp.ones(self.J)))
            )
        return self._essu

    @property
    def essr(self) -> float:
        """Ratio ``ess / essu``: the loss of ess due to weights alone."""
        essu = self.essu
        return self.ess / essu if essu > 0 else 0.0

    @property
    def mks(self) -> float:
        r"""Move KS diagnostic :math:`-\log_2 p`.

        The recorded move history is split into an older and a newer
        half; the p-value compares pre-move values of the older half to
        post-move values of the newer half.  Large values mean the
        chain has not forgotten where it started.  Infinite until ``M``
        moves have been recorded.
        """
        if self._mks is None:
            capacity = self.M
            if self.J == 0 or self._history_count < capacity:
                self._mks = float('inf')
            else:
                before = jnp.roll(self._history_from, -self._history_pos)
                after = jnp.roll(self._history_to, -self._history_pos)
                half = capacity // 2
                p = kernels.ks2_test(
                    before[:half], after[half:], key=self.next_key()
                )
                self._mks = float(-jnp.log2(p))
        return self._mks

    def _target_values(self) -> Array:
        if self.target is None:
            raise ValueError(f'{self.name} has no target')
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples to test')
        if self.samples.ndim != 1 or self.target.samples.ndim != 1:
            raise ValueError('KS tests need scalar particle values')
        return self.target.samples

    def ks_alpha(self) -> float:
        """KS statistic between the particles and the target."""
        target = self._target_values()
        return float(
            kernels.ks2(
                self.samples,
                target,
                x_weights=self.weights,
                y_weights=self.target.weights,
                key=self.next_key(),
            )
        )

    def ks_test(self) -> float:
        """KS p-value of the particles against the target."""
        target = self._target_values()
        return float(
            kernels.ks2_test(
                self.samples,
                target,
                x_weights=self.weights,
                y_weights=self.target.weights,
                key=self.next_key(),
            )
        )

    def mean(self) -> Array:
        """Weighted mean of the particles."""
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples')
        return kernels.mean(self.samples, self.weights)

    def quantiles(self, q: Float[Array, ' num_quantiles']) -> Array:
        """Quantiles of scalar particles, weighted if needed."""
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples')
        if self.weighted():
            return weighted_quantile(self, q)
        return kernels.quantiles(self.samples, q)

    # --- Model building and results ----------------------------------------

    def observe(self, value: Any) -> 'RandomVariable':
        """Mark the node observed at ``value`` (constant, array or node)."""
        self.observed = True
        self.value = value
        return self

    def update(self, **options: Any) -> UpdateSummary:
        """Run the update controller; see :func:`abcjax.update.update`."""
        return run_update(self, **options)

    def infer(
        self,
        size: int,
        target: Optional['RandomVariable'] = None,
        **options: Any,
    ) -> UpdateSummary:
        """Sample ``size`` prior particles, update, then assume results."""
        self.sample(size)
        summary = self.update(**options)
        self.assume(target)
        return summary

    def assume(
        self,
        target: Optional['RandomVariable'] = None,
        kind: str = 'samples',
    ) -> 'RandomVariable':
        """Push the particles into other nodes.

        Args:
            target: Node receiving the particles.  For a joint node,
                ``None`` means every component.
            kind: ``'samples'`` copies values and weights into the
                target's particles; ``'target'`` freezes them as the
                target's reference distribution.

        Returns:
            ``self``.
        """
        if kind not in ('samples', 'target'):
            raise ValueError(f"kind must be 'samples' or 'target', got {kind!r}")
        if target is not None:
            targets = (target,)
        else:
            targets = tuple(c for c in self.components if c is not self)
        if targets and self.J == 0:
            raise MissingSamples(f'{self.name} has no samples to assume')
        for node in targets:
            if node in self.components:
                values = self.marginal(node)
            else:
                values = self.samples
            if kind == 'samples':
                node._adopt(values, self.weights)
            else:
                node.target = Target(values, self.weights, self.ess)
        return self

    def posterior(self, size: Optional[int] = None) -> Array:
        """Unweighted posterior values, resampled when weighted."""
        return self.posterior_marginal(size=size)[0]

    def posterior_marginal(
        self, *nodes: 'RandomVariable', size: Optional[int] = None
    ) -> tuple[Array, ...]:
        """Unweighted draws of several carried nodes with shared indices."""
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples')
        nodes = nodes or (self,)
        if size is None and not self.weighted():
            return tuple(self.marginal(node) for node in nodes)
        size = self.J if size is None else size
        idx = self._draw_indices(size)
        return tuple(self.marginal(node)[idx] for node in nodes)

    def _draw_indices(self, size: int) -> Int[Array, ' size']:
        if self.weights is None:
            return draws.discrete_uniform(self.next_key(), self.J, (size,))
        return draws.discrete(self.next_key(), self.weights, size)

    def snapshot(self) -> Target:
        """Freeze the current particles as a reference distribution."""
        if self.J == 0:
            raise MissingSamples(f'{self.name} has no samples')
        return Target(self.samples, self.weights, self.ess)
