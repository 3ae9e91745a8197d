import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "phone_sim.config.json"
CONFIG_PATH_ENV = "PHONE_SIM_CONFIG"


class ConfigManager:
    """Dotted-key access to the simulator's JSON config file"""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        """Use ``config_file``, else ``$PHONE_SIM_CONFIG``, else ``phone_sim.config.json`` in the working directory"""
        self.config_file = Path(config_file or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_FILE)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration file; a missing or unreadable file yields an empty config"""
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error loading config %s: %s", self.config_file, e)
            return {}
        if not isinstance(data, dict):
            logger.error("Config %s must hold a JSON object", self.config_file)
            return {}
        return data

    def save(self) -> None:
        """Save configuration to file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration item"""
        value = self.config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration item and persist it"""
        keys = key.split(".")
        config = self.config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
        self.save()

    def list_config(self) -> Dict[str, Any]:
        """List all configuration items"""
        return self.config
