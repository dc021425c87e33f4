# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Rule-driven update loop: reweight, resample and move until done.

Each step of :func:`update`

1. picks a likelihood exponent :math:`r` and reweights if
   ``weight_rule`` says so;
2. resamples if ``sample_rule`` says so;
3. runs move sweeps while ``move_rule`` holds.

The loop stops once the move KS diagnostic has stayed below
``max_mks`` for ``max_mks_steps`` consecutive steps, the ess reaches
``min_ess``, the weights are uniform, the full likelihood is in
(:math:`r = 1`) and ``min_time`` has passed.  Otherwise it stops with
a warning after ``max_time`` seconds.

All rules receive ``(node, counters)`` where ``counters`` is an
:class:`~abcjax.containers.UpdateCounters`; constants are accepted in
place of rules.
"""

import logging
import time
from typing import Any

import jax.numpy as jnp

from abcjax.containers import (
    UpdateCounters,
    UpdateOptions,
    UpdateSummary,
    as_rule,
)
from abcjax.errors import MissingSamples
from abcjax.stats import clip

logger = logging.getLogger(__name__)


def _mean_log_posterior(node: Any) -> float:
    if node.log_posterior is None:
        return float('nan')
    return float(jnp.mean(node.log_posterior))


def update(node: Any, **options: Any) -> UpdateSummary:
    """Update the particles of ``node`` towards its posterior.

    Args:
        node: A sampled :class:`~abcjax.node.RandomVariable`.
        **options: Fields of :class:`~abcjax.containers.UpdateOptions`.

    Returns:
        An :class:`~abcjax.containers.UpdateSummary`.

    Raises:
        TypeError: If an option name is not recognized.
        MissingSamples: If ``node`` has no particles.
    """
    opts = UpdateOptions(**options)
    weight_exponent = as_rule(opts.weight_exponent)
    weight_rule = as_rule(opts.weight_rule)
    sample_rule = as_rule(opts.sample_rule)
    move_rule = as_rule(opts.move_rule)
    max_time = as_rule(opts.max_time)
    min_time = as_rule(opts.min_time)
    min_ess = as_rule(opts.min_ess)
    max_mks = as_rule(opts.max_mks)
    max_mks_steps = as_rule(opts.max_mks_steps)

    if node.J == 0:
        raise MissingSamples(f'{node.name} has no samples to update')

    start = time.monotonic()
    o = UpdateCounters()
    proposals = accepts = 0
    converged = False
    while True:
        o = o._replace(
            time=time.monotonic() - start, proposals=0, accepts=0, moves=0
        )
        o = o._replace(exponent=float(clip(weight_exponent(node, o), 0.0, 1.0)))
        phi_before = _mean_log_posterior(node)

        if weight_rule(node, o):
            node.weight(o.exponent)
        if node.J > 1 and sample_rule(node, o):
            node.sample(resampling_fn=opts.resampling_fn)

        out_of_time = False
        while move_rule(node, o):
            accepted = node.move(o.exponent)
            o = o._replace(
                proposals=o.proposals + node.J,
                accepts=o.accepts + accepted,
                moves=o.moves + 1,
                time=time.monotonic() - start,
            )
            if o.time >= max_time(node, o):
                out_of_time = True
                break
        proposals += o.proposals
        accepts += o.accepts

        o = o._replace(time=time.monotonic() - start)
        mks = node.mks
        if mks <= max_mks(node, o):
            o = o._replace(mks_steps=o.mks_steps + 1)
        else:
            o = o._replace(mks_steps=0)
        logger.debug(
            'step %d: r=%.3f ess=%.1f essu=%.1f mks=%.2f accepts=%d/%d',
            o.step,
            o.exponent,
            node.ess,
            node.essu,
            mks,
            o.accepts,
            o.proposals,
        )

        if (
            o.mks_steps >= max_mks_steps(node, o)
            and node.ess >= min_ess(node, o)
            and not node.weighted()
            and node.exponent == 1.0
            and o.time >= min_time(node, o)
        ):
            converged = True
            o = o._replace(step=o.step + 1)
            logger.info(
                'updated %s in %d steps (%.2fs): ess=%.1f mks=%.2f',
                node.name,
                o.step,
                o.time,
                node.ess,
                mks,
            )
            break
        if out_of_time or o.time >= max_time(node, o):
            o = o._replace(step=o.step + 1)
            logger.warning(
                'update of %s ran out of time after %d steps (%.2fs): '
                'delta_phi=%.3g mks=%.2f ess=%.1f (min_ess %.1f)',
                node.name,
                o.step,
                o.time,
                _mean_log_posterior(node) - phi_before,
                mks,
                node.ess,
                min_ess(node, o),
            )
            break
        o = o._replace(step=o.step + 1)

    return UpdateSummary(
        steps=o.step,
        time=o.time,
        converged=converged,
        ess=node.ess,
        essu=node.essu,
        mks=mks,
        exponent=o.exponent,
        proposals=proposals,
        accepts=accepts,
    )
