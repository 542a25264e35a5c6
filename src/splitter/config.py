"""Splitter configuration.

Defaults live in ``config/splitter_params.json``. Operators override
them through environment variables, optionally from a ``.env`` file at
the project root:

    SPLITTER_DENOMINATION      native token denomination (default: aconst)
    SPLITTER_BOUNDARY_TIMEOUT  seconds before a boundary call counts as failed
    SPLITTER_SHARE_TOLERANCE   allowed |sum(percentages) - 1|
    SPLITTER_LOG_LEVEL         logging level name for the CLI
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_DIR = ROOT / "config"
PARAMS_FILE = "splitter_params.json"


@dataclass(frozen=True)
class SplitterConfig:
    """Runtime parameters shared by the ledger, registry and engine."""

    denomination: str = "aconst"
    share_tolerance: Decimal = Decimal("0.000001")
    boundary_timeout: float = 30.0
    default_page_limit: int = 10
    max_page_limit: int = 30
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.denomination:
            raise ValueError("Denomination must not be empty")
        if self.share_tolerance < 0:
            raise ValueError("Share tolerance must be non-negative")
        if self.boundary_timeout <= 0:
            raise ValueError("Boundary timeout must be positive")
        if not 0 < self.default_page_limit <= self.max_page_limit:
            raise ValueError("Default page limit must be in (0, max_page_limit]")

    @classmethod
    def from_config_dir(cls, config_dir: Path = DEFAULT_CONFIG_DIR) -> SplitterConfig:
        """Load from splitter_params.json."""
        params = json.loads((config_dir / PARAMS_FILE).read_text())
        dist = params["distribution"]
        return cls(
            denomination=dist["DENOMINATION"],
            share_tolerance=Decimal(str(dist["SHARE_TOLERANCE"])),
            boundary_timeout=float(params["boundary"]["TIMEOUT_SECONDS"]),
            default_page_limit=int(params["queries"]["DEFAULT_PAGE_LIMIT"]),
            max_page_limit=int(params["queries"]["MAX_PAGE_LIMIT"]),
            log_level=params["logging"]["LEVEL"],
        )

    def with_overrides(self, env: Mapping[str, str]) -> SplitterConfig:
        """Apply SPLITTER_* overrides from an environment mapping."""
        changes = {}
        if env.get("SPLITTER_DENOMINATION"):
            changes["denomination"] = env["SPLITTER_DENOMINATION"]
        if env.get("SPLITTER_BOUNDARY_TIMEOUT"):
            changes["boundary_timeout"] = float(env["SPLITTER_BOUNDARY_TIMEOUT"])
        if env.get("SPLITTER_SHARE_TOLERANCE"):
            changes["share_tolerance"] = Decimal(env["SPLITTER_SHARE_TOLERANCE"])
        if env.get("SPLITTER_LOG_LEVEL"):
            changes["log_level"] = env["SPLITTER_LOG_LEVEL"].upper()
        return replace(self, **changes) if changes else self


def load_config(
    config_dir: Path = DEFAULT_CONFIG_DIR,
    env_file: Optional[Path] = None,
) -> SplitterConfig:
    """Load file defaults, then the .env file, then process environment."""
    load_dotenv(env_file or ROOT / ".env")
    if (config_dir / PARAMS_FILE).exists():
        base = SplitterConfig.from_config_dir(config_dir)
    else:
        base = SplitterConfig()
    return base.with_overrides(os.environ)
