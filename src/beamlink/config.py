"""
Configuration for beamlink peer-to-peer file transfer
"""
import os
import sys
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Wi-Fi / LAN transport
WIFI_PORT = 8988
CONNECT_TIMEOUT = 15.0  # seconds, client connect to the topology owner
TOPOLOGY_TIMEOUT = 60.0  # seconds to wait for the link layer to settle

# Bluetooth transport
BLUETOOTH_SERVICE_UUID = "fa87c0d0-afac-11de-8a39-0800200c9a66"
BLUETOOTH_SERVICE_NAME = "beamlink"
RFCOMM_CHANNEL = 4  # stdlib RFCOMM sockets address channels, not SDP records

# Framing
CHUNK_SIZE = 8192  # payload bytes per write/read
MAX_HANDSHAKE_SIZE = 64 * 1024
MAX_NAME_LENGTH = 4096

# Peer discovery (mDNS/Bonjour)
SERVICE_TYPE = "_beamlink._tcp.local."

# Logging
LOG_LEVEL = "INFO"

# Environment override for where received files land
RECEIVE_DIR_ENV_VAR = "BEAMLINK_RECEIVE_DIR"


def get_data_dir() -> Path:
    """Platform-specific directory for user data (config, history, logs)."""
    if sys.platform == 'win32':
        base = Path(os.environ.get('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
    elif sys.platform == 'darwin':
        base = Path.home() / 'Library' / 'Application Support'
    else:
        base = Path(os.environ.get('XDG_DATA_HOME', Path.home() / '.local' / 'share'))
    d = base / 'beamlink'
    d.mkdir(parents=True, exist_ok=True)
    return d


def get_receive_dir() -> Path:
    """
    Directory where incoming files are written.

    Honors BEAMLINK_RECEIVE_DIR, otherwise ~/Downloads/beamlink.
    """
    override = os.environ.get(RECEIVE_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / 'Downloads' / 'beamlink'


def get_log_file() -> Path:
    return get_data_dir() / 'beamlink.log'


def get_history_file() -> Path:
    return get_data_dir() / 'history.jsonl'


def get_config_file() -> Path:
    return get_data_dir() / 'config.json'
