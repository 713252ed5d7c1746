"""
Central configuration for the tooling workflow engine.

All paths, stock policies, and matching thresholds are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. config/workflow_settings.json  (admin-editable, persisted; applied
     last, so its keys also replace constructor arguments)
  2. Environment variables / constructor arguments
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_OUTPUT_DIR    = PROJECT_ROOT / "output"
DEFAULT_DB_PATH       = DEFAULT_OUTPUT_DIR / "workflow.db"
DEFAULT_CONFIG_DIR    = PROJECT_ROOT / "config"
DEFAULT_SUPPLIERS_CSV = PROJECT_ROOT / "data" / "suppliers.csv"

# Policies for the minimum stock level of a spare first booked in by a handover
MIN_STOCK_POLICY_DELIVERED = "delivered"   # min = quantity delivered
MIN_STOCK_POLICY_FIXED     = "fixed"       # min = initial_min_stock_level
MIN_STOCK_POLICIES         = {MIN_STOCK_POLICY_DELIVERED, MIN_STOCK_POLICY_FIXED}


@dataclass
class Config:
    # --- Storage ---
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    config_dir: Path = field(
        default_factory=lambda: Path(os.getenv("CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
    )

    # --- Reference data ---
    suppliers_csv: Path = field(
        default_factory=lambda: Path(os.getenv("SUPPLIERS_CSV", str(DEFAULT_SUPPLIERS_CSV)))
    )

    # --- Inventory ---
    initial_min_stock_policy: str = field(
        default_factory=lambda: os.getenv("INITIAL_MIN_STOCK_POLICY", MIN_STOCK_POLICY_DELIVERED)
    )
    initial_min_stock_level: int = field(
        default_factory=lambda: int(os.getenv("INITIAL_MIN_STOCK_LEVEL", "2"))
    )
    # Only used by the "fixed" policy.

    # --- Supplier lookup ---
    supplier_fuzzy_threshold: int = field(
        default_factory=lambda: int(os.getenv("SUPPLIER_FUZZY_THRESHOLD", "85"))
    )
    # Minimum rapidfuzz score (0-100) for a name to resolve to a supplier.

    # --- Export ---
    handover_export_template: Optional[str] = field(
        default_factory=lambda: os.getenv("HANDOVER_EXPORT_TEMPLATE", "handover_export.xml.j2")
    )

    def __post_init__(self) -> None:
        self._load_settings_file()
        if self.initial_min_stock_policy not in MIN_STOCK_POLICIES:
            logger.warning(
                "Unknown initial_min_stock_policy %r, using %r",
                self.initial_min_stock_policy, MIN_STOCK_POLICY_DELIVERED,
            )
            self.initial_min_stock_policy = MIN_STOCK_POLICY_DELIVERED

    def _load_settings_file(self) -> None:
        """Overlay runtime-tunable settings from workflow_settings.json if present."""
        settings_file = self.config_dir / "workflow_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "initial_min_stock_policy":  str,
            "initial_min_stock_level":   int,
            "supplier_fuzzy_threshold":  int,
            "handover_export_template":  str,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except Exception as exc:
            logger.warning("Failed to load workflow_settings.json: %s", exc)

    def initial_min_stock(self, delivered_quantity: int) -> int:
        """Minimum stock level for a spare that is new to inventory."""
        if self.initial_min_stock_policy == MIN_STOCK_POLICY_FIXED:
            return self.initial_min_stock_level
        return delivered_quantity

    @property
    def handover_template_path(self) -> Optional[Path]:
        if not self.handover_export_template:
            return None
        return self.config_dir / self.handover_export_template

    def ensure_output_dir(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
