"""
Configuration manager for Crenors
YAML-backed settings with environment substitution and change notification
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "bot": {
        "token": "${DISCORD_BOT_TOKEN}",
        "prefix": "!",
        "activity": "your community",
        "activity_type": "watching",
        "intents": {
            "message_content": True,
            "members": True
        }
    },
    "database": {
        "mongodb_uri": "${MONGODB_URI}",
        "database_name": "Crenors",
        "pool_size": 10
    },
    "logging": {
        "level": "INFO",
        "file": "logs/bot.log"
    },
    "modules": {
        "leveling": {
            "enabled": True,
            "message_xp": 15,
            "voice_xp": 10,
            "xp_cooldown": 60,
            "level_up_message": True,
            "level_up_channel": None,
            "role_rewards": [],
            "xp_boosters": []
        },
        "polls": {
            "enabled": True,
            "default_duration": 24,
            "allow_multiple": False,
            "require_role": None
        },
        "tickets": {
            "enabled": True,
            "transcript_channel": None,
            "category": None,
            "support_role": None,
            "auto_close": {
                "enabled": False,
                "hours": 24
            }
        }
    }
}


def replace_env_vars(obj):
    """Recursively replace ${ENV_VAR} with actual values"""
    if isinstance(obj, dict):
        return {k: replace_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [replace_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith('${') and obj.endswith('}'):
        env_var = obj[2:-1]
        return os.getenv(env_var, obj)
    return obj


class ConfigManager:
    """Loads, edits and persists config.yaml"""

    def __init__(self, config_path: str = 'config.yaml'):
        self.path = Path(config_path)
        self._raw: Dict[str, Any] = {}
        self.config: Dict[str, Any] = {}
        self._subscribers: List[Callable[[Dict[str, Any]], None]] = []
        self.load()

    def load(self) -> Dict[str, Any]:
        """
        Read the YAML file, writing the defaults first if it does not exist

        Raises:
            yaml.YAMLError: if the file is not valid YAML
        """
        if not self.path.exists():
            self._raw = copy.deepcopy(DEFAULT_CONFIG)
            self._write()
            logger.info(f"Created default config at {self.path}")
        else:
            with open(self.path, 'r', encoding='utf-8') as f:
                self._raw = yaml.safe_load(f) or {}

        self.config = replace_env_vars(self._raw)
        return self.config

    def get(self, path: str, default: Any = None) -> Any:
        """Get a value by dotted path, e.g. ``modules.leveling.message_xp``"""
        current: Any = self.config
        for key in path.split('.'):
            if not isinstance(current, dict) or key not in current:
                return default
            current = current[key]
        return current

    def set(self, path: str, value: Any) -> None:
        """Set a value by dotted path, save the file and notify subscribers"""
        for target in (self._raw, self.config):
            keys = path.split('.')
            last = keys.pop()
            node = target
            for key in keys:
                if not isinstance(node.get(key), dict):
                    node[key] = {}
                node = node[key]
            node[last] = copy.deepcopy(value)

        self.save()

    def save(self) -> None:
        """Write the current settings back to disk and notify subscribers"""
        self._write()
        self._notify()

    def reload(self) -> Dict[str, Any]:
        """Re-read the file and notify subscribers"""
        self.load()
        logger.info(f"Reloaded config from {self.path}")
        self._notify()
        return self.config

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback invoked with the new config after every change"""
        self._subscribers.append(callback)

    def _write(self) -> None:
        # Unexpanded values are written so ${ENV_VAR} placeholders survive
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self._raw, f, sort_keys=False, allow_unicode=True)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self.config)
            except Exception as e:
                logger.error(f"Config subscriber failed: {e}", exc_info=True)
