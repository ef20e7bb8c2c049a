"""
Configuration Loading

Reads the camera remote configuration from JSON, falling back to built-in
defaults for anything the file does not set.
"""

import copy
import json
import logging
import os
from typing import Dict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = os.path.join(os.path.dirname(__file__), '..', '..', '..', 'configs',
                                   'camera_remote_config.json')

DEFAULT_CONFIG = {
    'endpoints': {
        'camera': 'http://192.168.122.1:8080/sony/camera',
        'system': 'http://192.168.122.1:8080/sony/system',
        'avContent': 'http://192.168.122.1:8080/sony/avContent',
    },
    'network': {
        'connect_timeout': 5,
        'request_timeout': 10,
    },
    'retry': {
        'interval': 1.0,
    },
    'event': {
        'poll_interval': 0.1,
        'timeout': 15,
        'api_call_timeout': 8,
    },
    'liveview': {
        'chunk_size': 8192,
        'frame_info': True,
        'require_frame_info': False,
        'size': None,
        'duration': None,
    },
    'session': {
        'finalize': False,
    },
    'logging': {
        'level': 'INFO',
        'file': None,
    },
}


def _merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_file: str = None) -> Dict:
    """
    Load configuration from a JSON file.

    Args:
        config_file: Path to configuration file

    Returns:
        Configuration dictionary with defaults filled in
    """
    if config_file is None:
        config_file = DEFAULT_CONFIG_FILE
    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
    except FileNotFoundError:
        logger.info("Config file %s not found, using defaults", config_file)
        config = {}
    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_file} must contain a JSON object")

    # Endpoints replace the defaults wholesale; services are device specific
    endpoints = config.get('endpoints')
    merged = _merge(DEFAULT_CONFIG, config)
    if endpoints:
        merged['endpoints'] = dict(endpoints)
    return merged
