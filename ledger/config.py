"""
Configuration Management
========================

Resolves where ledger stores live and how much the CLI logs.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ledger.slug import default_base_dir

CONFIG_FILENAME = "ledger_config.json"
DEFAULT_LOG_LEVEL = "WARNING"

logger = logging.getLogger(__name__)


@dataclass
class LedgerConfig:
    """Ledger configuration."""
    base_dir: Path
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "LedgerConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables (LEDGER_HOME, LEDGER_LOG_LEVEL)
        2. Local config file (ledger_config.json)
        3. Default values
        """
        config = {
            "base_dir": str(default_base_dir()),
            "log_level": DEFAULT_LOG_LEVEL,
        }

        config_path = Path(config_path) if config_path else Path(CONFIG_FILENAME)
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    file_config = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)
            else:
                if isinstance(file_config, dict):
                    for key in ("base_dir", "log_level"):
                        if file_config.get(key):
                            config[key] = file_config[key]

        env_home = os.environ.get("LEDGER_HOME")
        if env_home:
            config["base_dir"] = env_home
        env_level = os.environ.get("LEDGER_LOG_LEVEL")
        if env_level:
            config["log_level"] = env_level

        return cls(
            base_dir=Path(config["base_dir"]).expanduser(),
            log_level=str(config["log_level"]).upper(),
        )

    def log_level_value(self) -> int:
        """The logging level for log_level, WARNING if the name is unknown."""
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.WARNING
