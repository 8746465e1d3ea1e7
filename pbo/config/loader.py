import yaml
from pathlib import Path
from typing import Optional
from .models import AppConfig

def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Loads YAML config and parses it into AppConfig. No path means all defaults."""
    if config_path is None:
        return AppConfig()
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Flat files (no 'general' section) are accepted as general settings
    if "general" not in data and "tools" not in data:
        data = {"general": data}

    return AppConfig(**data)
