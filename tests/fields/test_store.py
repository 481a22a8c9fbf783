"""
Tests for the prognostic field store.
"""

import pytest

from atmoflow.fields.store import FieldStore


def test_with_momentum(grid_2d):
    fields = FieldStore.with_momentum(grid_2d, scalars=("th", "qt"))
    assert list(fields.ap) == ["u", "v", "w", "th", "qt"]
    assert fields.momentum_names == ["u", "v", "w"]
    assert fields.scalar_names == ["th", "qt"]
    assert fields.loc["w"] == "w"
    assert fields.loc["qt"] == "s"
    assert fields.ap["u"].shape == grid_2d.shape


def test_value_and_tendency_are_separate(fields_2d):
    fields_2d.at["th"][:] = 1.
    assert fields_2d.ap["th"].sum() == 0.
    fields_2d.reset_tendencies()
    assert fields_2d.at["th"].sum() == 0.


def test_duplicate_field(fields_2d):
    with pytest.raises(ValueError, match="already exists"):
        fields_2d.add_prognostic("th", "s")


def test_unknown_location(fields_2d):
    with pytest.raises(ValueError, match="location"):
        fields_2d.add_prognostic("p", "c")
