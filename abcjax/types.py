# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Type aliases for abcjax."""

from collections.abc import Callable
from typing import Any, Union

from jaxtyping import Array, Float, PRNGKeyArray

PRNGKeyT = PRNGKeyArray
"""JAX PRNG key (handles both old and new JAX key formats)."""

Scalar = Union[float, Float[Array, ""]]
"""Python float or scalar JAX array with float dtype."""

Theta = tuple[Array, ...]
"""Per-particle parent values, one ``(J, ...)`` array per parent."""

Rule = Callable[[Any, Any], Any]
"""Update rule ``(node, counters) -> value`` used by the update loop."""
