"""
Document numbers used as entity identifiers.

Format: PREFIX-YYYY-NNN, e.g. PR-2024-001.  The sequence restarts every
calendar year and keeps growing past 999 when a year needs it.
"""
from typing import Iterable

PROJECT_PREFIX   = "PRJ"
PR_PREFIX        = "PR"
QUOTATION_PREFIX = "QT"
HANDOVER_PREFIX  = "HO"
INVENTORY_PREFIX = "INV"
REQUEST_PREFIX   = "REQ"
SUPPLIER_PREFIX  = "SUP"


def next_number(prefix: str, existing_ids: Iterable[str], year: int) -> str:
    """Return the next free PREFIX-YEAR-NNN given the ids already issued."""
    head = f"{prefix}-{year}-"
    highest = 0
    for entity_id in existing_ids:
        if not entity_id.startswith(head):
            continue
        tail = entity_id[len(head):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return f"{head}{highest + 1:03d}"


class NumberSequence:
    """
    Hands out consecutive numbers within one command, so a transition that
    creates several entities of the same kind never reuses an id.
    """

    def __init__(self, prefix: str, existing_ids: Iterable[str], year: int) -> None:
        self._prefix = prefix
        self._year = year
        self._issued = list(existing_ids)

    def __call__(self) -> str:
        number = next_number(self._prefix, self._issued, self._year)
        self._issued.append(number)
        return number


def item_id(pr_id: str, position: int) -> str:
    """Id for the *position*-th (1-based) item of a PR."""
    return f"{pr_id}-{position:02d}"


def critical_spare_id(handover_id: str, position: int) -> str:
    return f"{handover_id}-CS{position:02d}"
