# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

Usage:
    from tests.property.conftest import secondary_kinds, axis_orders

    @given(kind=secondary_kinds)
    def test_flag_matches_kind(kind: SecondaryInputKind) -> None:
        ...
"""

from __future__ import annotations

from pathlib import Path

from hypothesis import strategies as st

from ilastik_bridge.contracts import AXIS_ORDER, InvocationMode, SecondaryInputKind

secondary_kinds = st.sampled_from(list(SecondaryInputKind))
invocation_modes = st.sampled_from(list(InvocationMode))

# File name segments as they show up in scratch dirs and project paths
path_segments = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-.",
    min_size=1,
    max_size=20,
).filter(lambda s: s not in (".", ".."))

absolute_paths = st.lists(path_segments, min_size=1, max_size=4).map(lambda parts: Path("/", *parts))


@st.composite
def axis_orders(draw: st.DrawFn) -> str:
    """A non-empty permutation of a subset of the engine's axes."""
    axes = draw(st.lists(st.sampled_from(AXIS_ORDER), min_size=1, max_size=len(AXIS_ORDER), unique=True))
    return "".join(axes)
