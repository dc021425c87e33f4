# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Graph traversal and parameter evaluation for random variables.

A node never reads its parents' arrays directly.  Every density or
prior draw goes through an :class:`Evaluation`, which maps nodes to
per-particle values (the parameter sampler :math:`\theta`) for one
call:

- the evaluated node (and, for a joint node, its components) is bound
  to candidate values;
- nodes downstream of it are simulated forward from their priors, so
  they follow the candidate values;
- observed nodes supply their observed values;
- every other node contributes draws from its current particle set, or
  prior draws if it has not been sampled yet.

Each node is evaluated at most once per call, so nodes reachable along
several paths (diamonds) see the same values.
"""

from typing import Any, Optional

import jax.numpy as jnp
import jax.random as jr
from jaxtyping import Array, Float

from abcjax.errors import UnsupportedGraph
from abcjax.types import PRNGKeyT, Theta


def descendants(node: Any) -> list[Any]:
    """All nodes reachable through child edges, each listed once.

    Args:
        node: Random variable to start from (not included).

    Returns:
        Descendants in breadth-first order.
    """
    seen = set()
    order = []
    frontier = list(node.children)
    while frontier:
        child = frontier.pop(0)
        if child in seen or child is node:
            continue
        seen.add(child)
        order.append(child)
        frontier.extend(child.children)
    return order


def ancestors(node: Any) -> set:
    """All nodes reachable through parent edges (excluding ``node``)."""
    seen = set()
    frontier = list(node.parents)
    while frontier:
        parent = frontier.pop()
        if parent in seen:
            continue
        seen.add(parent)
        frontier.extend(parent.parents)
    return seen


def observed_descendants(node: Any) -> list[Any]:
    """Descendants marked observed, each listed once."""
    return [d for d in descendants(node) if d.observed]


def check_shared_ancestry(node: Any, observed: list[Any]) -> None:
    """Reject observed descendants that share outside ancestry.

    Reweighting replaces the previous log-posterior of every particle by
    the newly evaluated one.  That cancellation is exact only when the
    observed descendants have no common parents other than the node
    itself, its ancestors, or nodes downstream of it.

    Args:
        node: Node being reweighted or moved.
        observed: Its observed descendants.

    Raises:
        UnsupportedGraph: If two observed descendants share an
            unobserved ancestor outside the node's own lineage.
    """
    inside = set(node.components) | {node}
    inside |= set(descendants(node))
    for component in node.components:
        inside |= ancestors(component)
    owners = {}
    for d in observed:
        for a in ancestors(d):
            if a in inside or a.observed:
                continue
            if a in owners and owners[a] is not d:
                raise UnsupportedGraph(
                    f'observed nodes {owners[a].name} and {d.name} share '
                    f'ancestor {a.name} outside {node.name}; infer them '
                    f'jointly instead'
                )
            owners[a] = d


class Evaluation:
    """Per-call environment of node values.

    Args:
        node: Node being evaluated.
        key: PRNG key for all draws made during the call.
        num_particles: Number of values per node.
    """

    def __init__(self, node: Any, key: PRNGKeyT, num_particles: int):
        self.node = node
        self.key = key
        self.num_particles = num_particles
        self.downstream = set(descendants(node))
        self.env: dict[Any, Array] = {}

    def next_key(self) -> PRNGKeyT:
        """Split off a fresh key."""
        self.key, sub = jr.split(self.key)
        return sub

    def fork(self) -> 'Evaluation':
        """New environment sharing the values drawn upstream of the node.

        Values bound to the node and computed downstream of it are
        dropped, so a second set of candidate values can be evaluated
        against the same parent draws.
        """
        inner = self.downstream | set(self.node.components) | {self.node}
        forked = Evaluation(self.node, self.next_key(), self.num_particles)
        forked.env = {n: v for n, v in self.env.items() if n not in inner}
        return forked

    def bind(self, values: Array) -> None:
        """Bind candidate values for the evaluated node."""
        self.node.bind(self, values)

    def values(self, node: Any) -> Array:
        """Per-particle values of ``node``, computed at most once."""
        if node in self.env:
            return self.env[node]
        if node.observed:
            value = node.observed_values(self.num_particles)
        elif node.J > 0 and node not in self.downstream:
            value = node.draw(self.next_key(), self.num_particles)
        else:
            value = node.simulate(self)
        self.env[node] = value
        return value

    def theta(self, node: Any) -> Theta:
        """Parent values of ``node``, one array per parent."""
        return tuple(self.values(parent) for parent in node.parents)


def log_densities(
    node: Any,
    values: Array,
    key: Optional[PRNGKeyT] = None,
    observed: Optional[list[Any]] = None,
    evaluation: Optional[Evaluation] = None,
) -> tuple[Float[Array, ' num_particles'], Float[Array, ' num_particles']]:
    r"""Prior and likelihood log-densities of candidate values.

    .. math::

        \log p(x_j \mid \theta_j), \qquad
        \sum_{d \in \mathrm{observed}} \log p(y_d \mid \theta_{d,j})

    where descendants are evaluated with ``node`` bound to ``values``.

    Args:
        node: Node whose candidate values are evaluated.
        values: Candidate values, shape ``(J, ...)``.
        key: PRNG key; required unless ``evaluation`` is given.
        observed: Observed descendants, computed when ``None``.
        evaluation: Environment to reuse, e.g. one that already holds
            the parent values used for a proposal.

    Returns:
        A tuple ``(log_prior, log_likelihood)`` of shape ``(J,)`` arrays.
    """
    num_particles = values.shape[0]
    if evaluation is None:
        evaluation = Evaluation(node, key, num_particles)
    if observed is None:
        observed = observed_descendants(node)
    evaluation.bind(values)
    log_prior = node.prior_density(evaluation, values)
    log_likelihood = jnp.zeros(num_particles)
    for d in observed:
        log_likelihood = log_likelihood + d.log_likelihood(
            d.observed_values(num_particles), evaluation.theta(d)
        )
    return log_prior, log_likelihood
