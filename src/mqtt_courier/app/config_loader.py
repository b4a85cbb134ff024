"""
Configuration Loader.

Responsible for reading the config.yaml file and splitting it into the
sections the client and the application need.
"""
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Tuple, Union

logger = logging.getLogger(__name__)


def load_config(config_path: Union[str, Path] = "config.yaml") -> Dict[str, Any]:
    """
    Loads the YAML configuration file.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
        return {}

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {path}")
            return config
    except Exception as e:
        logger.error(f"Failed to parse config file: {e}")
        raise


def broker_settings(config: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Returns the broker URL and the remaining connection options
    from the `mqtt` section.
    """
    mqtt_conf = dict(config.get('mqtt') or {})
    url = mqtt_conf.pop('url', None)
    if url is None:
        host = mqtt_conf.pop('host', 'localhost')
        port = int(mqtt_conf.pop('port', 1883))
        url = f"mqtt://{host}:{port}"
    return url, mqtt_conf
