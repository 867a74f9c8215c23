"""YAML configuration for preprocessing, training, prediction and evaluation runs."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "default_config.yaml"

DEFAULT_DATA_PATHS = {
    'raw_data_path': 'data/raw/loan_data.csv',
    'processed_data_path': 'data/processed/loan_data_processed.csv',
    'models_dir': 'models',
}


def _merge(target: Dict[str, Any], updates: Dict[str, Any]) -> None:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


class ConfigManager:
    """
    Dot-notation access to the loan ensemble's YAML settings.

    Sections: ``data``, ``model.<model type>``, ``training``, ``parallel``,
    ``prediction``, ``evaluation`` and ``logging``. A missing file gives an
    empty configuration so every lookup falls back to its default.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            logger.warning(f"Configuration file not found: {self.config_path}")
            return {}
        try:
            with open(self.config_path, 'r') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {self.config_path}: {str(e)}"
            ) from e
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Configuration root in {self.config_path} must be a mapping"
            )
        return loaded

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a value by dotted key, e.g. ``'model.mlp.epochs'``.

        Returns ``default`` when any segment is missing.
        """
        node: Any = self._config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        *parents, leaf = key.split('.')
        node = self._config
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    def update(self, updates: Dict[str, Any]) -> None:
        """Deep-merge nested sections; dotted keys are set individually."""
        for key, value in updates.items():
            if '.' in key:
                self.set(key, value)
            else:
                _merge(self._config, {key: value})

    def save(self, path: Optional[Union[str, Path]] = None) -> None:
        save_path = Path(path) if path else self.config_path
        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, 'w') as f:
            yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)

    def get_data_paths(self) -> Dict[str, str]:
        """Raw CSV, processed CSV and model directory, with defaults filled in."""
        return {
            name: self.get(f'data.{name}', fallback)
            for name, fallback in DEFAULT_DATA_PATHS.items()
        }

    def get_model_config(self, model_type: str) -> Dict[str, Any]:
        """Hyperparameters for ``random_forest``, ``mlp`` or ``logistic_regression``."""
        return dict(self.get(f'model.{model_type}') or {})

    def get_training_config(self) -> Dict[str, Any]:
        return dict(self.get('training') or {})

    def get_model_assignment(self) -> List[str]:
        """Model type trained by each worker rank."""
        return list(self.get('training.model_assignment') or [])

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._config)


# Settings from config/default_config.yaml
config = ConfigManager()
