"""Tests for record identifier generation."""

from __future__ import annotations

import random
import re

import pytest

from provtrace.lifecycle.ids import IdGenerator, to_base36


def test_to_base36() -> None:
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"
    assert to_base36(1_700_000_000_000) == "loyw3v28"
    with pytest.raises(ValueError):
        to_base36(-1)


def test_ids_are_prefixed_and_uppercase() -> None:
    ids = IdGenerator(clock=lambda: 1_700_000_000_000, rng=random.Random(7))
    sample_id = ids.sample_id()
    assert re.fullmatch(r"SAMPLE-LOYW3V28-[0-9A-Z]{6}", sample_id)
    assert ids.batch_id().startswith("BATCH-LOYW3V28-")
    assert ids.step_id().startswith("STEP-")
    assert ids.test_id().startswith("TEST-")


def test_ids_are_deterministic_with_seeded_source() -> None:
    first = IdGenerator(clock=lambda: 42, rng=random.Random(3))
    second = IdGenerator(clock=lambda: 42, rng=random.Random(3))
    assert [first.sample_id() for _ in range(3)] == [second.sample_id() for _ in range(3)]


def test_random_suffix_length() -> None:
    ids = IdGenerator(clock=lambda: 1, rng=random.Random(0), random_length=9)
    assert len(ids.new("TX").split("-")[-1]) == 9
