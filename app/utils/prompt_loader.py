from __future__ import annotations
from pathlib import Path
from typing import Optional

PROMPTS_DIR = Path(__file__).resolve().parents[2] / "prompts"
SCHEMA_DESCRIPTION_FILE = "schema_description.txt"


def load_prompt(name: str) -> str:
    path = PROMPTS_DIR / name
    return path.read_text(encoding="utf-8").strip()


def load_schema_description(path: Optional[str] = None) -> str:
    """Read the schema description, from an explicit path or the bundled prompt file."""
    if path:
        return Path(path).read_text(encoding="utf-8").strip()
    return load_prompt(SCHEMA_DESCRIPTION_FILE)
