"""Loading and validation of the bridge configuration file (converter.conf.json)."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Optional

import orjson

from bridgeSdk.transport import getDefaultRegistry
from .errors import ConfigError

DEFAULT_BRIDGE_CONFIG = {
    'overlay': {
        'host': 'localhost',
        'port': 5000,
        'connectTimeout': 5.0,
        'ackTimeout': 2.0
    },
    'mserver': {
        'url': 'nats://localhost:4222',
        'subscribe_node': 'default',
        'publish_node': 'default'
    },
    'logging': {
        'logDir': None,
        'level': 'INFO',
        'console': True,
        'utc': False
    },
    'identityPrefix': 'proxy'
}

_OVERLAY_KEYS = {'host', 'port', 'connectTimeout', 'ackTimeout', 'encoding'}
_LOGGING_KEYS = {'logDir', 'level', 'console', 'utc', 'maxBytes', 'backupCount'}


def _section(config: dict, name: str) -> dict:
    section = config.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be an object")
    return section


def _validate_bridge_config(config: dict) -> None:
    overlay = config['overlay']
    unknown = set(overlay) - _OVERLAY_KEYS
    if unknown:
        raise ConfigError(f"Unknown 'overlay' options: {sorted(unknown)}")
    if not isinstance(overlay['host'], str) or not overlay['host']:
        raise ConfigError("'overlay.host' must be a non-empty string")
    if isinstance(overlay['port'], bool) or not isinstance(overlay['port'], int) or not 0 < overlay['port'] < 65536:
        raise ConfigError("'overlay.port' must be an integer port number")
    for key in ('connectTimeout', 'ackTimeout'):
        value = overlay[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(f"'overlay.{key}' must be a positive number of seconds")

    mserver = config['mserver']
    for key in ('url', 'subscribe_node', 'publish_node'):
        if not isinstance(mserver.get(key), str) or not mserver[key]:
            raise ConfigError(f"'mserver.{key}' must be a non-empty string")
    try:
        getDefaultRegistry().resolve(mserver['url'])
    except ValueError as exc:
        raise ConfigError(f"'mserver.url': {exc}") from exc
    # Extra broker transport options (e.g. NATS 'name', 'authToken'), checked by the adapter on connect
    if not isinstance(mserver.get('options', {}), dict):
        raise ConfigError("'mserver.options' must be an object")

    unknown = set(config['logging']) - _LOGGING_KEYS
    if unknown:
        raise ConfigError(f"Unknown 'logging' options: {sorted(unknown)}")

    if not isinstance(config['identityPrefix'], str) or not config['identityPrefix']:
        raise ConfigError("'identityPrefix' must be a non-empty string")


def merge_bridge_config(overrides: dict) -> dict:
    """Overlay user settings onto the defaults (one level deep) and validate the result."""
    if not isinstance(overrides, dict):
        raise ConfigError('Bridge config is not a JSON object')

    config = copy.deepcopy(DEFAULT_BRIDGE_CONFIG)
    for name in ('overlay', 'mserver', 'logging'):
        config[name].update(_section(overrides, name))
    if 'identityPrefix' in overrides:
        config['identityPrefix'] = overrides['identityPrefix']

    _validate_bridge_config(config)
    return config


def load_bridge_config(path: str | Path, log: Optional[object] = None) -> dict:
    """Load the bridge config file; raises ConfigError when missing or malformed."""
    cfg_path = Path(path)

    try:
        raw = cfg_path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc

    try:
        overrides = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise ConfigError(f"Config file {cfg_path} is not valid JSON: {exc}") from exc

    config = merge_bridge_config(overrides)
    if log:
        log.info('Loaded bridge config', event='bridgeConfigLoad', component='BridgeConfig',
                 configPath=str(cfg_path), brokerUrl=config['mserver']['url'],
                 overlayEndpoint=f"{config['overlay']['host']}:{config['overlay']['port']}")
    return config
