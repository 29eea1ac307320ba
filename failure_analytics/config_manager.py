import copy
import json
import os

CONFIG_FILE = os.environ.get(
    'ANALYTICS_CONFIG_FILE',
    os.path.join(os.path.dirname(__file__), 'data', 'config.json')
)

DEFAULT_CONFIG = {
    "operating_hours": {
        "hours_per_year": 8760,
        "hours_per_month": 730
    },
    "trend_window_months": 6,
    "ranking_limit": 5
}


def _merge(defaults: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config(config_file: str = None) -> dict:
    """Loads the configuration from the JSON file, using defaults for anything it doesn't set."""
    path = config_file or CONFIG_FILE
    if not os.path.exists(path):
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(path, 'r') as f:
        return _merge(DEFAULT_CONFIG, json.load(f))


def set_config(config: dict, config_file: str = None) -> dict:
    """Saves the configuration to the JSON file. Partial updates are merged over the current values."""
    path = config_file or CONFIG_FILE
    merged = _merge(get_config(path), config)
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    with open(path, 'w') as f:
        json.dump(merged, f, indent=4)
    return merged
