#!/usr/bin/env python3
"""
Configuration and logging setup tests.
"""

import io
import json
import logging
import os
import sys

import pytest

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from camremote.utils import configure_logging, load_config
from camremote.utils.config import DEFAULT_CONFIG


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / 'missing.json'))
    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_shipped_config_matches_defaults():
    config = load_config()
    assert config['endpoints']['camera'] == 'http://192.168.122.1:8080/sony/camera'
    assert config['event']['timeout'] == 15


def test_partial_sections_are_merged(tmp_path):
    config_file = tmp_path / 'camera.json'
    config_file.write_text(json.dumps({'network': {'request_timeout': 30}, 'liveview': {'size': 'M'}}))

    config = load_config(str(config_file))

    assert config['network'] == {'connect_timeout': 5, 'request_timeout': 30}
    assert config['liveview']['size'] == 'M'
    assert config['liveview']['chunk_size'] == 8192
    assert DEFAULT_CONFIG['network']['request_timeout'] == 10


def test_endpoints_replace_defaults(tmp_path):
    config_file = tmp_path / 'camera.json'
    config_file.write_text(json.dumps({'endpoints': {'camera': 'http://10.0.0.1/sony/camera'}}))

    assert load_config(str(config_file))['endpoints'] == {'camera': 'http://10.0.0.1/sony/camera'}


def test_non_object_config_is_rejected(tmp_path):
    config_file = tmp_path / 'camera.json'
    config_file.write_text('[1, 2, 3]')

    with pytest.raises(ValueError):
        load_config(str(config_file))


def test_configure_logging_to_stream():
    stream = io.StringIO()
    logger = configure_logging('debug', stream)

    logging.getLogger('camremote.protocols.invoker').debug("request sent")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert 'camremote.protocols.invoker: request sent' in stream.getvalue()


def test_configure_logging_replaces_handlers(tmp_path):
    log_file = str(tmp_path / 'camremote.log')
    configure_logging(logging.INFO, io.StringIO())
    logger = configure_logging(logging.WARNING, log_file)

    logging.getLogger('camremote.core.camera').warning("link lost")
    logging.getLogger('camremote.core.camera').info("not written")
    for handler in logger.handlers:
        handler.flush()

    assert len(logger.handlers) == 1
    with open(log_file) as f:
        content = f.read()
    assert 'link lost' in content
    assert 'not written' not in content
