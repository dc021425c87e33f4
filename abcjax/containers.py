# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Containers for node statistics, reference targets and update runs.

All containers are :class:`~typing.NamedTuple` subclasses, so they are
immutable and registered as JAX PyTrees by default.  Counters are
advanced with ``_replace``.
"""

from collections.abc import Callable
from typing import Any, NamedTuple, Optional

from blackjax.smc.resampling import multinomial
from jaxtyping import Array, Float

from abcjax.stats import clip
from abcjax.types import Rule


class Stats(NamedTuple):
    r"""Running operation counters of a random variable.

    Attributes:
        samples: Calls to ``sample`` that (re)initialized the particles.
        weights: Weight arrays set by a weighted prior draw or passed to
            ``weight``.
        reweights: Calls to ``weight``.
        resamples: Calls to ``sample()`` without arguments.
        moves: Metropolis-Hastings sweeps.
        proposals: Proposed particle moves.
        accepts: Accepted particle moves.
    """

    samples: int = 0
    weights: int = 0
    reweights: int = 0
    resamples: int = 0
    moves: int = 0
    proposals: int = 0
    accepts: int = 0


class Target(NamedTuple):
    r"""Frozen reference distribution used only for evaluation.

    Attributes:
        samples: Reference particle values, shape ``(K, ...)``.
        weights: Reference weights, shape ``(K,)``, or ``None`` for
            uniform weights.
        ess: Effective sample size of the reference.
    """

    samples: Array
    weights: Optional[Float[Array, ' K']]
    ess: float


class UpdateCounters(NamedTuple):
    r"""Step counters passed to update rules as their second argument.

    Attributes:
        step: Update step index, starting at zero.
        time: Seconds elapsed since the update started.
        exponent: Weight exponent chosen for the current step.
        proposals: Proposed moves in the current step.
        accepts: Accepted moves in the current step.
        moves: Move sweeps in the current step.
        mks_steps: Consecutive steps with ``mks <= max_mks``.
    """

    step: int = 0
    time: float = 0.0
    exponent: float = 0.0
    proposals: int = 0
    accepts: int = 0
    moves: int = 0
    mks_steps: int = 0


class UpdateSummary(NamedTuple):
    r"""Outcome of an update run.

    Attributes:
        steps: Number of completed update steps.
        time: Wall-clock seconds spent.
        converged: Whether the stopping conditions were met, as opposed
            to running out of time.
        ess: Final effective sample size.
        essu: Final unweighted (lineage) effective sample size.
        mks: Final move KS diagnostic.
        exponent: Final weight exponent.
        proposals: Total proposed moves.
        accepts: Total accepted moves.
    """

    steps: int
    time: float
    converged: bool
    ess: float
    essu: float
    mks: float
    exponent: float
    proposals: int
    accepts: int


# --- Default update rules --------------------------------------------------


def _weight_exponent(node: Any, o: UpdateCounters) -> float:
    """Ramp the likelihood in over the first three steps."""
    return min(1.0, (o.step + 1) / 3)


def _weight_rule(node: Any, o: UpdateCounters) -> bool:
    """Reweight when never reweighted or when the exponent moved."""
    return node.exponent is None or node.exponent != o.exponent


def _sample_rule(node: Any, o: UpdateCounters) -> bool:
    """Resample only when weight skew, not duplication, limits ess."""
    return node.essr < clip(node.essu / node.J, 0.5, 1.0)


def _move_rule(node: Any, o: UpdateCounters) -> bool:
    """Move until lineage is diverse and every particle moved once."""
    return node.essu < node.J / 2 or o.accepts < node.J


def _min_ess(node: Any, o: UpdateCounters) -> float:
    return node.J / 2


class UpdateOptions(NamedTuple):
    r"""Options recognized by :func:`abcjax.update.update`.

    Every field except ``resampling_fn`` is either a rule
    ``(node, counters) -> value`` or a constant, which is wrapped into a
    constant rule.

    Attributes:
        weight_exponent: Likelihood exponent in ``[0, 1]`` for the step.
        weight_rule: Whether to reweight in the step.
        sample_rule: Whether to resample in the step.
        move_rule: Whether to run another move sweep.
        max_time: Time budget in seconds.
        min_time: Minimum run time in seconds.
        min_ess: Minimum effective sample size for convergence.
        max_mks: Maximum move KS diagnostic for convergence.
        max_mks_steps: Consecutive steps ``mks`` must stay below
            ``max_mks``.
        resampling_fn: Resampling scheme with the Blackjax signature
            ``(key, weights, num_samples) -> indices``.
    """

    weight_exponent: Any = _weight_exponent
    weight_rule: Any = _weight_rule
    sample_rule: Any = _sample_rule
    move_rule: Any = _move_rule
    max_time: Any = 10.0
    min_time: Any = 0.0
    min_ess: Any = _min_ess
    max_mks: Any = 1.0
    max_mks_steps: Any = 2
    resampling_fn: Callable = multinomial


def as_rule(value: Any) -> Rule:
    """Wrap a constant into a rule; return callables unchanged."""
    if callable(value):
        return value
    return lambda node, o: value
