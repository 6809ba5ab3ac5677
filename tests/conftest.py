"""Pytest fixtures for salary engine tests."""

from __future__ import annotations

import pytest

from salary_engine.calculators.structure_evaluator import compile_structure
from salary_engine.services.events import DomainEvent

from .factories import MemoryWorld, standard_structure


@pytest.fixture(autouse=True)
def clear_compile_cache():
    """Structures are cached by value; start every test cold."""
    compile_structure.cache_clear()
    yield
    compile_structure.cache_clear()


@pytest.fixture
def structure():
    return standard_structure()


@pytest.fixture
def world() -> MemoryWorld:
    """Empty in-memory stores."""
    return MemoryWorld()


@pytest.fixture
def events(world: MemoryWorld) -> list[DomainEvent]:
    """Every event emitted through the world's emitter, in order."""
    captured: list[DomainEvent] = []
    world.emitter.on_all(captured.append)
    return captured
