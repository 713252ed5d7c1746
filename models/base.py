"""
Helpers shared by all entity models.
"""
from typing import TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


def revise(entity: M, **changes) -> M:
    """
    Return a re-validated copy of *entity* with *changes* applied.

    model_copy(update=...) skips validation, so every status change goes
    through here to keep model-level invariants in force.
    """
    data = entity.model_dump()
    data.update(changes)
    return type(entity).model_validate(data)


def to_cents(amount: float) -> float:
    """Round a money amount to 2 dp (all computed totals use this)."""
    return round(float(amount), 2)
