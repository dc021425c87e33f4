# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for the RandomVariable kernel operations and diagnostics."""

import jax.numpy as jnp
import jax.random as jr
import jax.scipy.stats as jstats
import numpy as np
import pytest

from abcjax.containers import Stats, Target
from abcjax.distributions import Condition, Likelihood, Normal, Uniform
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
from abcjax.node import RandomVariable

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ImportanceNormal(RandomVariable):
    """N(1, 1) prior drawn from N(0, 3^2) with importance weights."""

    weighted_prior = True

    def sample_prior(self, key, theta, num_particles):
        x = 3.0 * jr.normal(key, (num_particles,))
        log_w = jstats.norm.logpdf(x, 1.0, 1.0) - jstats.norm.logpdf(x, 0.0, 3.0)
        return x, log_w

    def log_prior(self, values, theta):
        return jstats.norm.logpdf(values, 1.0, 1.0)


class BrokenPrior(RandomVariable):
    """Weighted prior returning fixed log weights."""

    weighted_prior = True

    def __init__(self, log_weight, **kwargs):
        self.log_weight = log_weight
        super().__init__(**kwargs)

    def sample_prior(self, key, theta, num_particles):
        return jnp.zeros(num_particles), jnp.full(num_particles, self.log_weight)


# ---------------------------------------------------------------------------
# sample
# ---------------------------------------------------------------------------


class TestSample:
    """Prior draws and adoption."""

    def test_prior_draw(self):
        x = Uniform(2.0, 3.0, key=jr.PRNGKey(0), stats=True)
        x.sample(500)
        assert x.J == 500
        assert x.samples.shape == (500,)
        assert jnp.all((x.samples > 2.0) & (x.samples < 3.0))
        assert x.weights is None
        assert jnp.array_equal(x.index_map, jnp.arange(500))
        assert x.stats == Stats(samples=1)

    def test_same_key_same_draws(self):
        a = Normal(key=jr.PRNGKey(7)).sample(10)
        b = Normal(key=jr.PRNGKey(7)).sample(10)
        assert jnp.array_equal(a.samples, b.samples)

    @pytest.mark.parametrize('size', [0, -3])
    def test_non_positive_size_raises(self, size):
        with pytest.raises(InvalidSampleSize):
            Uniform().sample(size)

    def test_empty_array_raises(self):
        with pytest.raises(InvalidSampleSize):
            Uniform().sample(jnp.array([]))

    @pytest.mark.parametrize('size', [jnp.array(10), np.int64(10)])
    def test_scalar_integer_size(self, size):
        x = Uniform().sample(size)
        assert x.J == 10
        assert x.samples.shape == (10,)

    def test_scalar_integer_array_must_be_positive(self):
        with pytest.raises(InvalidSampleSize, match='positive'):
            Uniform().sample(jnp.array(0))

    def test_scalar_float_is_not_a_size(self):
        with pytest.raises(InvalidSampleSize):
            Uniform().sample(jnp.array(10.0))

    def test_adopt_array(self):
        x = Uniform().sample(jnp.array([0.1, 0.2, 0.3]))
        assert x.J == 3
        assert x.weights is None
        assert x.log_posterior is None

    def test_clone_node_copies_weights(self):
        source = Uniform().sample(jnp.array([0.1, 0.2, 0.3]))
        source.weight(jnp.array([1.0, 0.0, 2.0]))
        x = Uniform().sample(source)
        assert jnp.array_equal(x.samples, source.samples)
        assert jnp.array_equal(x.weights, source.weights)

    def test_clone_unsampled_node_raises(self):
        with pytest.raises(MissingSamples):
            Uniform().sample(Uniform())

    def test_prior_uses_parent_particles_without_mutating_them(self):
        parent = Uniform(10.0, 11.0).sample(200)
        before = parent.samples
        child = Normal(parent, 0.01).sample(300)
        assert jnp.all((child.samples > 9.9) & (child.samples < 11.1))
        assert jnp.array_equal(parent.samples, before)
        assert parent.J == 200

    def test_unsampled_parent_uses_its_prior(self):
        parent = Uniform(10.0, 11.0)
        child = Normal(parent, 0.01).sample(300)
        assert jnp.all((child.samples > 9.9) & (child.samples < 11.1))
        assert parent.J == 0

    def test_sample_resets_posterior_state(self, normal_model):
        mu, _ = normal_model
        mu.sample(50).weight()
        mu.sample(50)
        assert mu.log_posterior is None
        assert mu.exponent is None
        assert mu.weights is None


class TestWeightedPrior:
    """Nodes whose prior sampler returns importance weights."""

    def test_weights_are_stored(self):
        x = ImportanceNormal(key=jr.PRNGKey(3), stats=True).sample(5000)
        assert x.weighted()
        assert jnp.max(x.weights) == 1.0
        assert abs(float(x.mean()) - 1.0) < 0.1
        assert x.stats.weights == 1

    def test_all_zero_weights_raise(self):
        with pytest.raises(InvalidWeights):
            BrokenPrior(-jnp.inf).sample(10)

    def test_nan_weights_raise(self):
        with pytest.raises(NaNWeight):
            BrokenPrior(jnp.nan).sample(10)


# ---------------------------------------------------------------------------
# sample() (resample)
# ---------------------------------------------------------------------------


class TestResample:
    """Multinomial resampling."""

    def test_unsampled_raises(self):
        with pytest.raises(MissingSamples):
            Uniform().sample()

    def test_single_particle_raises(self):
        with pytest.raises(RedundantResample):
            Uniform().sample(1).sample()

    def test_weight_then_resample_is_unweighted(self, threshold_model):
        x, _ = threshold_model
        x.sample(1000).weight()
        assert x.weighted()
        x.sample()
        assert not x.weighted()
        assert x.wj_sum == 1000
        assert jnp.all(x.samples > 0.9)

    def test_essu_does_not_increase(self):
        x = Uniform(key=jr.PRNGKey(5)).sample(500)
        essu_before = x.essu
        assert essu_before == pytest.approx(500.0)
        x.sample()
        assert x.essu <= essu_before
        x_essu = x.essu
        x.sample()
        assert x.essu <= x_essu + 1e-9

    def test_lineage_follows_indices(self):
        x = Uniform(key=jr.PRNGKey(6)).sample(jnp.arange(100.0))
        x.sample()
        assert jnp.array_equal(x.samples.astype(int), x.index_map)

    def test_posterior_cache_follows_indices(self, normal_model):
        mu, _ = normal_model
        mu.sample(200).weight()
        mu.sample()
        expected = jstats.norm.logpdf(mu.samples) + jstats.norm.logpdf(
            1.0, mu.samples
        )
        assert jnp.allclose(mu.log_posterior, expected)

    def test_stats(self, threshold_model):
        x, _ = threshold_model
        x.sample(100).weight()
        x.sample()
        assert x.stats.resamples == 1
        assert x.stats.reweights == 1


# ---------------------------------------------------------------------------
# weight
# ---------------------------------------------------------------------------


class TestWeight:
    """Importance reweighting by observed descendants."""

    def test_unsampled_raises(self, normal_model):
        mu, _ = normal_model
        with pytest.raises(MissingSamples):
            mu.weight()

    def test_single_particle_raises(self, normal_model):
        mu, _ = normal_model
        with pytest.raises(RedundantReweight):
            mu.sample(1).weight()

    def test_no_observed_descendants_raises(self):
        x = Uniform().sample(10)
        with pytest.raises(MissingObservedDescendants):
            x.weight()

    def test_unobserved_child_is_not_enough(self):
        x = Uniform().sample(10)
        Normal(x, 1.0)
        with pytest.raises(MissingObservedDescendants):
            x.weight()

    @pytest.mark.parametrize('exponent', [-0.1, 1.5])
    def test_exponent_out_of_range_raises(self, normal_model, exponent):
        mu, _ = normal_model
        with pytest.raises(ValueError):
            mu.sample(10).weight(exponent)

    def test_likelihood_weights(self, normal_model):
        """Weights after the first reweight are proportional to p(y|mu)."""
        mu, _ = normal_model
        mu.sample(100).weight()
        lik = jnp.exp(jstats.norm.logpdf(1.0, mu.samples))
        assert jnp.allclose(mu.weights / jnp.sum(mu.weights), lik / jnp.sum(lik))
        assert mu.exponent == 1.0

    def test_log_evidence_matches_marginal_likelihood(self, normal_model):
        """y | mu ~ N(mu, 1), mu ~ N(0, 1) gives y ~ N(0, 2)."""
        mu, _ = normal_model
        mu.sample(20000)
        assert mu.log_evidence == 0.0
        mu.weight()
        expected = jstats.norm.logpdf(1.0, 0.0, jnp.sqrt(2.0))
        assert abs(mu.log_evidence - float(expected)) < 0.05

    def test_tempered_log_evidence_telescopes(self, normal_model):
        """Increments at r = 0.4 then 1 multiply to the mean likelihood."""
        mu, _ = normal_model
        mu.sample(200).weight(0.4)
        mu.weight(1.0)
        log_lik = jstats.norm.logpdf(1.0, mu.samples)
        expected = jnp.log(jnp.mean(jnp.exp(log_lik)))
        assert jnp.allclose(mu.log_evidence, expected)

    def test_vector_observation_sums_log_likelihood(self):
        """An observed array holds i.i.d. draws given each particle."""
        mu = Normal(0.0, 1.0, key=jr.PRNGKey(3))
        ys = jnp.array([1.0, 2.0, 3.0])
        Normal(mu, 1.0).observe(ys)
        mu.sample(500).weight()
        log_lik = jnp.sum(
            jstats.norm.logpdf(ys[None, :], mu.samples[:, None]), axis=1
        )
        lik = jnp.exp(log_lik - jnp.max(log_lik))
        assert jnp.allclose(mu.weights / jnp.sum(mu.weights), lik / jnp.sum(lik))

    def test_vector_observation_posterior_mean(self):
        """N(0, 1) prior and y = (1, 2, 3) give the N(1.5, 0.25) posterior."""
        mu = Normal(0.0, 1.0, key=jr.PRNGKey(4))
        Normal(mu, 1.0).observe(jnp.array([1.0, 2.0, 3.0]))
        mu.sample(5000).weight()
        assert abs(float(mu.mean()) - 1.5) < 0.06

    def test_zero_exponent_gives_uniform_weights(self, normal_model):
        mu, _ = normal_model
        mu.sample(100).weight(0.0)
        assert not mu.weighted()

    def test_tempered_weights_compose(self, normal_model):
        """Reweighting at r then 1 equals reweighting at 1 directly."""
        mu, _ = normal_model
        mu.sample(100).weight(0.4)
        mu.weight(1.0)
        lik = jnp.exp(jstats.norm.logpdf(1.0, mu.samples))
        assert jnp.allclose(mu.weights / jnp.sum(mu.weights), lik / jnp.sum(lik))

    def test_impossible_particles_get_zero_weight(self, threshold_model):
        x, _ = threshold_model
        x.sample(1000).weight()
        assert jnp.all(jnp.where(x.samples <= 0.9, x.weights == 0.0, True))
        assert jnp.all(jnp.where(x.samples > 0.9, x.weights == 1.0, True))

    def test_all_zero_weights_raise(self):
        x = Uniform().sample(50)
        Condition(lambda v: v > 2.0, x)
        with pytest.raises(InvalidWeights):
            x.weight()

    def test_nan_density_raises(self):
        x = Uniform().sample(50)
        Likelihood(lambda v: jnp.full_like(v, jnp.nan), x)
        with pytest.raises(NaNWeight):
            x.weight()

    def test_explicit_weights(self):
        x = Uniform().sample(3)
        x.weight(jnp.array([1.0, 2.0, 1.0]))
        assert x.weighted()
        assert x.wj_sum == 4.0

    def test_explicit_weights_length_mismatch(self):
        x = Uniform().sample(3)
        with pytest.raises(SizeMismatch):
            x.weight(jnp.array([1.0, 2.0]))

    def test_explicit_negative_weights_raise(self):
        x = Uniform().sample(2)
        with pytest.raises(InvalidWeights):
            x.weight(jnp.array([1.0, -2.0]))


# ---------------------------------------------------------------------------
# move
# ---------------------------------------------------------------------------


class TestMove:
    """Metropolis-Hastings sweeps."""

    def test_move_before_reweight_raises(self, normal_model):
        mu, _ = normal_model
        with pytest.raises(CannotMoveBeforeReweight):
            mu.sample(10).move()

    def test_unsampled_raises(self, normal_model):
        mu, _ = normal_model
        with pytest.raises(MissingSamples):
            mu.move()

    def test_accept_count_and_stats(self, normal_model):
        mu, _ = normal_model
        mu.sample(200).weight()
        accepts = mu.move()
        assert 0 < accepts <= 200
        assert mu.stats.moves == 1
        assert mu.stats.proposals == 200
        assert mu.stats.accepts == accepts

    def test_moves_keep_constraint(self, threshold_model):
        x, _ = threshold_model
        x.sample(500).weight()
        x.sample()
        for _ in range(5):
            x.move()
        assert jnp.all(x.samples > 0.9)
        assert jnp.all(x.samples < 1.0)

    def test_accepted_moves_get_new_lineage(self, normal_model):
        mu, _ = normal_model
        mu.sample(100).weight()
        mu.sample()
        before = mu.samples
        mu.move()
        moved = mu.samples != before
        assert jnp.all(jnp.where(moved, mu.index_map >= 100, True))
        assert len(set(mu.index_map[moved].tolist())) == int(jnp.sum(moved))

    def test_moves_restore_diversity(self, threshold_model):
        x, _ = threshold_model
        x.sample(500).weight()
        x.sample()
        essu_after_resample = x.essu
        for _ in range(10):
            x.move()
        assert x.essu > essu_after_resample

    def test_log_posterior_stays_consistent(self, normal_model):
        mu, _ = normal_model
        mu.sample(100).weight()
        for _ in range(3):
            mu.move()
        expected = jstats.norm.logpdf(mu.samples) + jstats.norm.logpdf(
            1.0, mu.samples
        )
        assert jnp.allclose(mu.log_posterior, expected)

    def test_explicit_exponent(self, normal_model):
        mu, _ = normal_model
        mu.sample(100).weight(1.0)
        accepts = mu.move(0.5)
        assert 0 <= accepts <= 100
        assert mu.exponent == 1.0
        # the cache stays tempered at the exponent of the last reweight
        expected = jstats.norm.logpdf(mu.samples) + jstats.norm.logpdf(
            1.0, mu.samples
        )
        assert jnp.allclose(mu.log_posterior, expected)

    def test_zero_exponent_ignores_constraint(self, threshold_model):
        x, _ = threshold_model
        x.sample(200).weight(1.0)
        x.sample()
        assert jnp.all(x.samples > 0.9)
        for _ in range(10):
            x.move(0.0)
        assert jnp.any(x.samples < 0.9)
        assert jnp.all((x.samples >= 0.0) & (x.samples <= 1.0))

    @pytest.mark.parametrize('exponent', [-0.1, 1.5])
    def test_exponent_out_of_range_raises(self, normal_model, exponent):
        mu, _ = normal_model
        mu.sample(10).weight()
        with pytest.raises(ValueError):
            mu.move(exponent)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class TestDiagnostics:
    """ess, essu, essr, mks and target comparisons."""

    def test_empty_node(self):
        x = Uniform()
        assert x.ess == 0.0
        assert x.essu == 0.0

    def test_ess_bounds(self, normal_model):
        mu, _ = normal_model
        mu.sample(300).weight()
        assert 1.0 <= mu.ess <= 300.0
        assert mu.essu == pytest.approx(300.0)
        assert mu.essr == pytest.approx(mu.ess / 300.0)

    def test_ess_aggregates_duplicate_lineages(self):
        x = Uniform().sample(jnp.array([0.1, 0.2]))
        x.index_map = jnp.array([0, 0])
        x.invalidate()
        assert x.essu == pytest.approx(1.0)
        assert x.ess == pytest.approx(1.0)

    def test_cache_invalidated_by_reweight(self, normal_model):
        mu, _ = normal_model
        mu.sample(100)
        assert mu.ess == pytest.approx(100.0)
        mu.weight()
        assert mu.ess < 100.0

    def test_mks_infinite_before_history_fills(self, normal_model):
        mu, _ = normal_model
        mu.sample(100).weight()
        assert mu.mks == float('inf')
        mu.move()
        assert mu.mks == float('inf')

    def test_mks_finite_after_history_fills(self, normal_model):
        mu, _ = normal_model
        mu.sample(100).weight()
        mu.move()
        mu.move()
        assert jnp.isfinite(mu.mks)
        assert mu.mks >= 0.0

    def test_custom_history_size(self):
        x = Normal(0.0, 1.0, history=20)
        Normal(x, 1.0).observe(0.0)
        x.sample(10).weight()
        assert x.M == 20
        x.move()
        assert x.mks == float('inf')
        x.move()
        assert jnp.isfinite(x.mks)

    def test_ks_against_target(self):
        x = Uniform(key=jr.PRNGKey(8)).sample(500)
        y = Uniform(key=jr.PRNGKey(9)).sample(500)
        y.assume(x, kind='target')
        assert isinstance(x.target, Target)
        assert 0.0 <= x.ks_alpha() < 0.15
        assert x.ks_test() > 0.001

    def test_ks_without_target_raises(self):
        with pytest.raises(ValueError):
            Uniform().sample(10).ks_test()

    def test_mean_and_quantiles(self):
        x = Uniform().sample(jnp.array([1.0, 2.0, 3.0, 4.0]))
        assert jnp.allclose(x.mean(), 2.5)
        assert jnp.allclose(x.quantiles(jnp.array([0.5])), 2.5)

    def test_weighted_quantiles(self):
        x = Uniform().sample(jnp.array([1.0, 2.0, 3.0, 4.0]))
        x.weight(jnp.array([0.0, 0.0, 1.0, 0.0]))
        assert jnp.allclose(x.quantiles(jnp.array([0.5])), 3.0)
        assert jnp.allclose(x.mean(), 3.0)


# ---------------------------------------------------------------------------
# Model building and results
# ---------------------------------------------------------------------------


class TestResults:
    """observe, assume, posterior, snapshot, reset."""

    def test_observe_returns_node(self):
        y = Normal()
        assert y.observe(1.0) is y
        assert y.observed
        assert jnp.array_equal(y.observed_values(3), jnp.ones(3))

    def test_observe_node_values(self):
        data = Uniform().sample(jnp.array([0.5, 0.6]))
        mu = Normal().sample(2)
        y = Normal(mu, 1.0).observe(data)
        assert jnp.array_equal(y.observed_values(2), data.samples)
        with pytest.raises(SizeMismatch):
            y.observed_values(3)

    def test_posterior_unweighted_is_samples(self):
        x = Uniform().sample(jnp.array([1.0, 2.0]))
        assert jnp.array_equal(x.posterior(), x.samples)

    def test_posterior_resamples_weighted(self):
        x = Uniform().sample(jnp.array([1.0, 2.0, 3.0]))
        x.weight(jnp.array([0.0, 1.0, 0.0]))
        draws = x.posterior(50)
        assert draws.shape == (50,)
        assert jnp.all(draws == 2.0)

    def test_assume_samples_copies_particles(self):
        x = Uniform().sample(jnp.array([1.0, 2.0, 3.0]))
        x.weight(jnp.array([1.0, 0.0, 1.0]))
        y = Uniform()
        x.assume(y)
        assert jnp.array_equal(y.samples, x.samples)
        assert jnp.array_equal(y.weights, x.weights)

    def test_assume_without_target_is_noop(self):
        x = Uniform().sample(3)
        assert x.assume() is x

    def test_assume_unknown_kind_raises(self):
        x = Uniform().sample(3)
        with pytest.raises(ValueError):
            x.assume(Uniform(), kind='values')

    def test_snapshot(self):
        x = Uniform().sample(jnp.array([1.0, 2.0]))
        target = x.snapshot()
        assert jnp.array_equal(target.samples, x.samples)
        assert target.weights is None
        assert target.ess == pytest.approx(2.0)

    def test_reset(self, normal_model):
        mu, _ = normal_model
        mu.sample(10).weight()
        mu.reset()
        assert mu.J == 0
        assert mu.samples is None
        assert mu.log_posterior is None
        with pytest.raises(MissingSamples):
            mu.snapshot()

    def test_repr(self):
        assert repr(Uniform(name='u')) == "Uniform(name='u', J=0)"
