"""
beamlink - serverless peer-to-peer file transfer

One side creates a session token and hands it to the other out of band
(QR code, paste, file). Both sides then run send/receive with the same
token; the token's transport decides between Wi-Fi (LAN) and Bluetooth.

Commands:
    beamlink token                       Create a session token
    beamlink send --token T --owner F    Send files, listening for the peer
    beamlink receive --token T --connect HOST
    beamlink history                     Show completed transfers
    beamlink config                      Show/edit configuration
"""
import sys
import logging
import signal
import argparse
from datetime import datetime
from pathlib import Path
from typing import Optional

from beamlink import config
from beamlink.common.bluetooth import BluetoothDevice, BluetoothDeviceRegistry
from beamlink.common.chunked_transfer import ProgressTracker, format_bytes, format_time
from beamlink.common.discovery import LanWifiLink
from beamlink.common.errors import BeamError, MalformedToken, TransportUnavailable, get_error_from_exception
from beamlink.common.files import LocalFileAccess
from beamlink.common.history import Direction, JsonlHistory
from beamlink.common.protocol import TransferMetadata
from beamlink.common.session import (
    SessionToken, TransferKind, TRANSPORT_PARAM, TRANSPORT_WIFI, TRANSPORT_BLUETOOTH
)
from beamlink.common.user_config import get_config, get_config_manager, print_config, parse_value
from beamlink.transport.coordinator import FallbackPolicy, TransportCoordinator
from beamlink.transport.roles import Role

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, level: str = config.LOG_LEVEL):
    """Log to stdout and to the log file in the data directory"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(config.get_log_file())
        ]
    )


def load_token(path: str) -> SessionToken:
    """Read a token record from a file, or from stdin when path is '-'"""
    if path == '-':
        return SessionToken.from_json(sys.stdin.read())
    try:
        return SessionToken.from_json(Path(path).read_bytes())
    except FileNotFoundError:
        raise MalformedToken(f"Token file not found: {path}") from None


class ProgressPrinter:
    """Prints a single updating progress line with speed and ETA"""

    def __init__(self):
        self.tracker: Optional[ProgressTracker] = None
        self.last_percent = -1

    def __call__(self, transferred: int, total: int):
        if self.tracker is None:
            self.tracker = ProgressTracker(total)
            self.tracker.start()
        self.tracker.update(transferred - self.tracker.bytes_transferred)

        percent = int(transferred * 100 / total) if total else 100
        if percent == self.last_percent:
            return
        self.last_percent = percent
        print(f"\r  {self.tracker.get_progress_string()}", end='', flush=True)

    def summary(self) -> str:
        """' in 1m 5s' once a transfer has run for at least a second, else ''"""
        if self.tracker is None or self.tracker.stats.elapsed_seconds < 1:
            return ""
        return f" in {format_time(self.tracker.stats.elapsed_seconds)}"

    def finish(self):
        if self.last_percent >= 0:
            print()


def wifi_configured(args) -> bool:
    """True when the command line set up a Wi-Fi topology this run can use"""
    return bool(args.owner or args.connect or args.discover)


def build_coordinator(args, link: LanWifiLink, devices: BluetoothDeviceRegistry,
                      receive_dir: Path = None) -> TransportCoordinator:
    user_cfg = get_config()

    def on_transport_changed(old, new, reason):
        print(f"\n[WARN] {reason}: switching from {old.value} to {new.value}")

    return TransportCoordinator(
        link, devices,
        LocalFileAccess(receive_dir or user_cfg.receive_path),
        JsonlHistory(config.get_history_file()),
        wifi_port=args.port or user_cfg.wifi_port,
        connect_timeout=user_cfg.connect_timeout,
        topology_timeout=user_cfg.topology_timeout,
        rfcomm_channel=user_cfg.rfcomm_channel,
        bluetooth_fallback=FallbackPolicy(user_cfg.bluetooth_fallback),
        # Without a Wi-Fi option the fallback would only wait out topology_timeout
        on_transport_changed=on_transport_changed if wifi_configured(args) else None,
        chunk_size=user_cfg.chunk_size,
        receive_dir=receive_dir,
    )


def _setup_wifi(args, link: LanWifiLink):
    if args.owner:
        link.start_discovery()
        link.create_group()
    elif args.connect:
        link.connect_address(args.connect)
    elif args.discover:
        link.start_discovery()
        print("Looking for peers on the local network...")
        timeout = get_config().topology_timeout
        peers = link.peers.wait_for(lambda p: len(p) > 0, timeout=timeout)
        if not peers:
            raise TransportUnavailable(f"No peer found within {timeout:.0f}s")
        print(f"Found {peers[0].name} at {peers[0].address}")
        link.connect(peers[0])


def _run(coordinator: TransportCoordinator, role: Role, token: SessionToken, **kwargs):
    """Run a transfer, cancelling it cleanly on Ctrl+C"""
    def signal_handler(sig, frame):
        print("\nCancelling...")
        coordinator.cancel()

    previous = signal.signal(signal.SIGINT, signal_handler)
    try:
        return coordinator.transfer(role, token, **kwargs)
    finally:
        signal.signal(signal.SIGINT, previous)


def _fail(exc: BaseException):
    message = get_error_from_exception(exc)
    print(f"\n[FAILED] {message}")
    logger.debug(f"{type(exc).__name__}: {exc}")
    sys.exit(1)


def cmd_token(args):
    """Create a session token and print or save it"""
    kind = TransferKind.MULTI_FILE if args.kind == 'multi' else TransferKind.SINGLE_FILE
    token = SessionToken.generate(kind, {TRANSPORT_PARAM: args.transport})

    if args.output:
        path = Path(args.output)
        path.write_text(token.to_json())
        print(f"[OK] Token {token.id} written to {path}")
        print("  Hand this file to the other device, then delete it after the transfer.")
    else:
        print(token.to_json())


def cmd_send(args):
    """Send files to the peer holding the same token"""
    files = [Path(f) for f in args.files]
    missing = [str(f) for f in files if not f.is_file()]
    if missing:
        print(f"[ERROR] Not a file: {', '.join(missing)}")
        sys.exit(1)

    link = LanWifiLink(port=args.port or get_config().wifi_port)
    devices = BluetoothDeviceRegistry()
    printer = ProgressPrinter()
    try:
        token = load_token(args.token)
        if args.bt:
            devices.add_device(BluetoothDevice(address=args.bt))
        elif token.transport != TRANSPORT_WIFI and not wifi_configured(args):
            print("[WARN] No --bt address given. Use --owner, --connect or --discover "
                  "to allow falling back to Wi-Fi.")
        _setup_wifi(args, link)

        coordinator = build_coordinator(args, link, devices)
        metadata = TransferMetadata.for_files(coordinator.file_access, files)
        print(f"\nSending {metadata.display_name} ({format_bytes(metadata.total_size)}) "
              f"over {token.transport}...")

        record = _run(coordinator, Role.SENDER, token, metadata=metadata, files=files, progress=printer)
        printer.finish()
        print(f"[OK] Sent {record.name} ({format_bytes(record.size)}){printer.summary()}")
    except (BeamError, OSError) as e:
        printer.finish()
        _fail(e)
    finally:
        link.stop()


def cmd_receive(args):
    """Receive files from the peer holding the same token"""
    link = LanWifiLink(port=args.port or get_config().wifi_port)
    devices = BluetoothDeviceRegistry()
    printer = ProgressPrinter()
    try:
        token = load_token(args.token)
        _setup_wifi(args, link)

        coordinator = build_coordinator(args, link, devices,
                                        receive_dir=Path(args.dest).expanduser() if args.dest else None)
        print(f"\nWaiting for transfer over {token.transport}...")

        record = _run(coordinator, Role.RECEIVER, token, progress=printer)
        printer.finish()
        print(f"[OK] Received {record.name} ({format_bytes(record.size)}){printer.summary()}")
        dest = args.dest or coordinator.file_access.receive_directory()
        print(f"  Saved to {dest}")
    except (BeamError, OSError) as e:
        printer.finish()
        _fail(e)
    finally:
        link.stop()


def cmd_history(args):
    """Show the most recent transfers"""
    records = JsonlHistory(config.get_history_file()).entries(limit=args.lines)
    if not records:
        print("\nNo transfers yet.")
        return

    print()
    for record in records:
        arrow = "->" if record.direction is Direction.SEND else "<-"
        when = datetime.fromtimestamp(record.timestamp / 1000).strftime('%Y-%m-%d %H:%M:%S')
        print(f"  {when}  {arrow} {record.name} ({format_bytes(record.size)})")
    print()


def cmd_config(args):
    """Show or modify configuration"""
    config_mgr = get_config_manager()
    user_cfg = config_mgr.get()

    if args.reset:
        config_mgr.reset()
        print("[OK] Configuration reset to defaults.")
        print_config()
        return

    if args.set:
        key, raw = args.set
        if not hasattr(user_cfg, key):
            print(f"[ERROR] Unknown config key: {key}")
            print("\nAvailable keys:")
            for k in vars(user_cfg):
                if not k.startswith('_'):
                    print(f"  - {k}")
            sys.exit(1)
        try:
            value = parse_value(key, raw)
        except ValueError:
            print(f"[ERROR] Invalid value for {key}: {raw}")
            sys.exit(1)

        if config_mgr.set(key, value):
            print(f"[OK] Set {key} = {value}")
        else:
            print(f"[ERROR] Could not set {key} = {value} (see log for details)")
            sys.exit(1)
        return

    print_config()


def _add_wifi_args(parser, allow_bluetooth: bool = False):
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--owner', action='store_true',
                       help='Own the Wi-Fi topology (listen for the peer)')
    group.add_argument('--connect', metavar='HOST', help='Connect to the owner at HOST')
    group.add_argument('--discover', action='store_true',
                       help='Find the owner with mDNS and connect to it')
    if allow_bluetooth:
        group.add_argument('--bt', metavar='ADDR', help='Bluetooth address of the receiver')
    parser.add_argument('--port', type=int, default=None,
                        help=f'Wi-Fi port (default: {config.WIFI_PORT})')


def main():
    parser = argparse.ArgumentParser(
        prog='beamlink',
        description='Serverless peer-to-peer file transfer over Wi-Fi or Bluetooth',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  beamlink token -o token.json                     Create a Wi-Fi token
  beamlink send --token token.json --owner a.txt   Send, waiting for the peer
  beamlink receive --token token.json --connect 192.168.1.5
  beamlink token --transport bluetooth -o bt.json
  beamlink send --token bt.json --bt AA:BB:CC:DD:EE:FF a.txt
  beamlink config --set bluetooth_fallback fail
"""
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    token_parser = subparsers.add_parser('token', help='Create a session token')
    token_parser.add_argument('--transport', choices=[TRANSPORT_WIFI, TRANSPORT_BLUETOOTH],
                              default=TRANSPORT_WIFI, help='Transport to use (default: wifi)')
    token_parser.add_argument('--kind', choices=['single', 'multi'], default='single',
                              help='Transfer kind (default: single)')
    token_parser.add_argument('-o', '--output', help='Write the token to a file instead of stdout')

    send_parser = subparsers.add_parser('send', help='Send files')
    send_parser.add_argument('--token', required=True, help="Token file ('-' for stdin)")
    _add_wifi_args(send_parser, allow_bluetooth=True)
    send_parser.add_argument('files', nargs='+', help='Files to send')

    receive_parser = subparsers.add_parser('receive', help='Receive files')
    receive_parser.add_argument('--token', required=True, help="Token file ('-' for stdin)")
    _add_wifi_args(receive_parser)
    receive_parser.add_argument('--dest', help='Directory for received files')

    history_parser = subparsers.add_parser('history', help='Show completed transfers')
    history_parser.add_argument('-n', '--lines', type=int, default=20,
                                help='Number of entries to show (default: 20)')

    config_parser = subparsers.add_parser('config', help='Show/edit configuration')
    config_parser.add_argument('--show', action='store_true', help='Show current configuration')
    config_parser.add_argument('--reset', action='store_true', help='Reset to default configuration')
    config_parser.add_argument('--set', nargs=2, metavar=('KEY', 'VALUE'), help='Set a configuration value')

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    setup_logging(args.verbose, get_config().log_level)

    if args.command == 'token':
        cmd_token(args)
    elif args.command == 'send':
        cmd_send(args)
    elif args.command == 'receive':
        cmd_receive(args)
    elif args.command == 'history':
        cmd_history(args)
    elif args.command == 'config':
        cmd_config(args)
    else:
        parser.print_help()


if __name__ == '__main__':
    main()
