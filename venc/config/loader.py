import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Relative storage paths are resolved against the config file location
    storage = data.get("storage")
    if isinstance(storage, dict):
        for key in ("raw_dir", "serving_dir"):
            value = storage.get(key)
            if value and not Path(value).is_absolute():
                storage[key] = str(config_path.parent / value)

    return AppConfig(**data)
