import yaml
from pathlib import Path
from .models import AppConfig

SECTIONS = {"general", "gpu", "ui"}


def load_config(config_path: Path) -> AppConfig:
    """Reads a YAML config file into AppConfig.

    Raises FileNotFoundError for a missing file and ValueError for YAML that
    does not parse into a mapping; field errors surface as pydantic
    ValidationError.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping, got {type(data).__name__}")

    # Flat files (no section headers) are treated as general settings
    if not SECTIONS & set(data):
        data = {"general": data}

    return AppConfig(**data)
