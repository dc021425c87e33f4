# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Exceptions raised by the inference engine.

Structural errors mean the model graph or the particle set is wired
incorrectly; numerical errors mean a density or weight computation
produced values that would corrupt the posterior.  Both are raised at
the violated precondition and never caught inside the library.
"""


class InferenceError(Exception):
    """Base class for all abcjax errors."""


class StructuralError(InferenceError, ValueError):
    """Model graph or particle set is in an invalid state."""


class NumericalError(InferenceError, ArithmeticError):
    """A density or weight computation failed."""


class MissingSamples(StructuralError):
    """Operation requires a non-empty particle set."""


class MissingChildren(StructuralError):
    """Operation requires child nodes."""


class MissingObservedDescendants(MissingChildren):
    """Operation requires at least one observed descendant."""


class RedundantResample(StructuralError):
    """Resampling a single particle cannot diversify anything."""


class RedundantReweight(StructuralError):
    """Reweighting a single particle cannot differentiate anything."""


class CannotMoveBeforeReweight(StructuralError):
    """Moves need the log-posterior cache filled by a reweight."""


class SizeMismatch(StructuralError):
    """Parallel arrays have different lengths."""


class InvalidSampleSize(StructuralError):
    """Sample size must be a positive integer."""


class UnsupportedGraph(StructuralError):
    """Observed descendants share ancestry the reweight cannot cancel."""


class NaNWeight(NumericalError):
    """A density evaluation returned NaN."""


class InvalidWeights(NumericalError):
    """Weights are negative or sum to zero."""
