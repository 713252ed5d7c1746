"""
Bootstrap script to ensure essential configuration files exist in the config volume.
Copies factory defaults from defaults/ to config/ if files are missing.
"""
import json
import os
import shutil
from pathlib import Path
from typing import Optional

# Project structure
PROJECT_ROOT = Path(__file__).parent
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
DEFAULTS_DIR = PROJECT_ROOT / "defaults"

SETTINGS_FILE = "workflow_settings.json"


def ensure_config_files(config_dir: Optional[Path] = None, defaults_dir: Optional[Path] = None) -> list[str]:
    """Verify and restore missing config files from defaults folder.  Returns the files restored."""
    config_dir = Path(config_dir) if config_dir else CONFIG_DIR
    defaults_dir = Path(defaults_dir) if defaults_dir else DEFAULTS_DIR
    config_dir.mkdir(parents=True, exist_ok=True)
    restored: list[str] = []

    if not defaults_dir.exists():
        print(f"[Bootstrap] Warning: Defaults directory not found at {defaults_dir}")
        return restored

    # 1. Runtime settings
    src = defaults_dir / SETTINGS_FILE
    dst = config_dir / SETTINGS_FILE
    if not dst.exists() and src.exists():
        print(f"[Bootstrap] Restoring missing config file: {SETTINGS_FILE}")
        shutil.copy2(src, dst)
        restored.append(SETTINGS_FILE)
    elif dst.exists() and src.exists():
        # Repair corrupted settings file
        try:
            if dst.stat().st_size == 0:
                raise ValueError("Empty file")
            with open(dst, "r", encoding="utf-8") as f:
                json.load(f)
        except (json.JSONDecodeError, ValueError):
            print(f"[Bootstrap] Repairing invalid {SETTINGS_FILE}")
            shutil.copy2(src, dst)
            restored.append(SETTINGS_FILE)

    # 2. Jinja2 templates
    for src_template in defaults_dir.glob("*.j2"):
        dst_template = config_dir / src_template.name
        if not dst_template.exists():
            print(f"[Bootstrap] Restoring missing template: {src_template.name}")
            shutil.copy2(src_template, dst_template)
            restored.append(src_template.name)

    return restored


if __name__ == "__main__":
    ensure_config_files()
