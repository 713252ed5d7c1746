"""
Supplier lookup.

Resolves a supplier reference (as typed on a quotation or PR form) against
the supplier master list using multiple strategies in priority order:
  1. Id exact match
  2. Code match (case-insensitive)
  3. Name or alias exact match (case-insensitive)
  4. Fuzzy name match (using rapidfuzz)

Also loads the supplier master list from CSV for bulk import.
"""
import csv
import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError
from rapidfuzz import fuzz

from models import Supplier, SupplierStatus
from .errors import ValidationFailed, describe_validation_error

logger = logging.getLogger(__name__)

# Minimum fuzzy score (0-100) to accept a name match
FUZZY_THRESHOLD = 85


class SupplierDirectory:
    """Matches free-text supplier references against a list of Supplier records."""

    def __init__(self, suppliers: Iterable[Supplier], fuzzy_threshold: int = FUZZY_THRESHOLD):
        self.suppliers: list[Supplier] = list(suppliers)
        self.fuzzy_threshold = fuzzy_threshold

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, reference: Optional[str]) -> Optional[Supplier]:
        """
        Try all matching strategies and return the matching Supplier,
        or None if the reference could not be identified.
        """
        ref = (reference or "").strip()
        if not ref or not self.suppliers:
            return None

        # 1. Id
        for s in self.suppliers:
            if s.id == ref:
                return s

        wanted = ref.lower()

        # 2. Code
        for s in self.suppliers:
            if s.code.lower() == wanted:
                logger.debug("Supplier matched by code: %s -> %s", ref, s.id)
                return s

        # 3. Name exact match
        for s in self.suppliers:
            if any(n.lower() == wanted for n in s.all_names):
                logger.debug("Supplier matched by exact name: %s -> %s", ref, s.id)
                return s

        # 4. Fuzzy name match
        return self._fuzzy_name_match(wanted)

    def _fuzzy_name_match(self, name: str) -> Optional[Supplier]:
        """Use rapidfuzz to find the best name match above the threshold."""
        best_score = 0.0
        best_supplier: Optional[Supplier] = None

        for s in self.suppliers:
            for candidate_name in s.all_names:
                score = fuzz.token_sort_ratio(name, candidate_name.lower())
                if score > best_score:
                    best_score = score
                    best_supplier = s

        if best_supplier and best_score >= self.fuzzy_threshold:
            logger.info(
                "Supplier fuzzy matched: '%s' -> '%s' (score=%d)",
                name, best_supplier.name, best_score,
            )
            return best_supplier

        logger.debug("Best fuzzy match score was %d (threshold=%d)", best_score, self.fuzzy_threshold)
        return None

    def by_code(self, code: str) -> Optional[Supplier]:
        wanted = code.strip().lower()
        return next((s for s in self.suppliers if s.code.lower() == wanted), None)


def _split_list(raw: Optional[str]) -> list[str]:
    return [part.strip() for part in (raw or "").split("|") if part.strip()]


def load_suppliers_csv(path: str | Path, created_at: str) -> list[Supplier]:
    """
    Read a supplier master list.

    CSV format (suppliers.csv):
      id, code, name, contact_person, email, phone, address, categories, rating, aliases
      categories / aliases: pipe-separated lists, e.g. "ACME Corp|ACME Pty Ltd"
      id may be blank (the importer numbers the supplier); rows without a
      code or name are skipped.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("Suppliers CSV not found: %s", path)
        return []

    suppliers: list[Supplier] = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for line_no, row in enumerate(reader, start=2):
            code = (row.get("code") or "").strip()
            name = (row.get("name") or "").strip()
            if not code or not name:
                logger.warning("%s line %d: missing code or name, skipped", path.name, line_no)
                continue
            rating_raw = (row.get("rating") or "").strip()
            status_raw = (row.get("status") or "").strip()
            try:
                suppliers.append(Supplier(
                    id=(row.get("id") or "").strip(),
                    code=code,
                    name=name,
                    contact_person=(row.get("contact_person") or "").strip() or None,
                    email=(row.get("email") or "").strip() or None,
                    phone=(row.get("phone") or "").strip() or None,
                    address=(row.get("address") or "").strip() or None,
                    status=status_raw or SupplierStatus.ACTIVE,
                    categories=_split_list(row.get("categories")),
                    rating=rating_raw or 0.0,
                    aliases=_split_list(row.get("aliases")),
                    created_at=created_at,
                ))
            except ValidationError as exc:
                raise ValidationFailed(
                    f"{path.name} line {line_no}: {describe_validation_error(exc)}"
                ) from exc
    logger.info("Loaded %d suppliers from %s", len(suppliers), path.name)
    return suppliers
