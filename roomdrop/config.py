"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv


@dataclass
class Config:
    """
    roomdrop configuration, shared by the relay server and the peer CLI.

    Configuration priority (highest to lowest):
    1. Environment variables (ROOMDROP_*)
    2. Config file (roomdrop.json)
    3. Default values
    """
    # Relay server
    host: str = '0.0.0.0'
    port: int = 3000
    max_frame_bytes: int = 1024 * 1024  # 1MB, well above one chunk frame
    max_pending_frames: int = 256       # per-connection outbox

    # Peer
    relay_url: str = 'ws://localhost:3000/ws'
    chunk_size: int = 64 * 1024  # 64KB

    # Receiver memory bounds
    max_transfer_bytes: int = 100 * 1024 * 1024  # 100MB
    idle_timeout: float = 300.0
    eviction_interval: float = 30.0

    # Storage (transfer history + received files)
    data_dir: Path = field(default_factory=lambda: Path('./roomdrop_data'))

    # Logging
    log_level: str = 'INFO'

    @property
    def history_path(self) -> Path:
        return self.data_dir / 'history.db'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Relay server
        config.host = os.getenv('ROOMDROP_HOST', config.host)
        config.port = int(os.getenv('ROOMDROP_PORT', config.port))
        config.max_frame_bytes = int(
            os.getenv('ROOMDROP_MAX_FRAME_BYTES', config.max_frame_bytes)
        )
        config.max_pending_frames = int(
            os.getenv('ROOMDROP_MAX_PENDING_FRAMES', config.max_pending_frames)
        )

        # Peer
        config.relay_url = os.getenv('ROOMDROP_RELAY_URL', config.relay_url)
        config.chunk_size = int(os.getenv('ROOMDROP_CHUNK_SIZE', config.chunk_size))

        # Receiver memory bounds
        config.max_transfer_bytes = int(
            os.getenv('ROOMDROP_MAX_TRANSFER_BYTES', config.max_transfer_bytes)
        )
        config.idle_timeout = float(os.getenv('ROOMDROP_IDLE_TIMEOUT', config.idle_timeout))
        config.eviction_interval = float(
            os.getenv('ROOMDROP_EVICTION_INTERVAL', config.eviction_interval)
        )

        # Storage
        data_dir = os.getenv('ROOMDROP_DATA_DIR')
        if data_dir:
            config.data_dir = Path(data_dir)

        # Logging
        config.log_level = os.getenv('ROOMDROP_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Relay server
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)
        config.max_frame_bytes = data.get('max_frame_bytes', config.max_frame_bytes)
        config.max_pending_frames = data.get('max_pending_frames', config.max_pending_frames)

        # Peer
        config.relay_url = data.get('relay_url', config.relay_url)
        config.chunk_size = data.get('chunk_size', config.chunk_size)

        # Receiver memory bounds
        config.max_transfer_bytes = data.get('max_transfer_bytes', config.max_transfer_bytes)
        config.idle_timeout = data.get('idle_timeout', config.idle_timeout)
        config.eviction_interval = data.get('eviction_interval', config.eviction_interval)

        # Storage
        if 'data_dir' in data:
            config.data_dir = Path(data['data_dir'])

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'max_frame_bytes': self.max_frame_bytes,
            'max_pending_frames': self.max_pending_frames,
            'relay_url': self.relay_url,
            'chunk_size': self.chunk_size,
            'max_transfer_bytes': self.max_transfer_bytes,
            'idle_timeout': self.idle_timeout,
            'eviction_interval': self.eviction_interval,
            'data_dir': str(self.data_dir),
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()
    defaults = Config()

    # Merge (env takes precedence for non-default values)
    for key in defaults.to_dict():
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 3000,
  "max_frame_bytes": 1048576,
  "max_pending_frames": 256,
  "relay_url": "ws://localhost:3000/ws",
  "chunk_size": 65536,
  "max_transfer_bytes": 104857600,
  "idle_timeout": 300.0,
  "eviction_interval": 30.0,
  "data_dir": "./roomdrop_data",
  "log_level": "INFO"
}
"""
