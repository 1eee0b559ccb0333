"""
Session tokens

A SessionToken is the short-lived descriptor exchanged out of band (tap, QR
code, pasted text) that seeds a transfer: the session id, what kind of
transfer it is, the single-use handshake key and transport preferences.

Out-of-band record (UTF-8 JSON):
    {"id": "...", "type": "SINGLE_FILE", "tempKey": "<base64url>", "params": {"transport": "wifi"}}
"""
import json
import uuid
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Optional

from beamlink.common.crypto import generate_key, encode_key, decode_key, KEY_SIZE
from beamlink.common.errors import MalformedToken

logger = logging.getLogger(__name__)

TRANSPORT_PARAM = "transport"
TRANSPORT_WIFI = "wifi"
TRANSPORT_BLUETOOTH = "bluetooth"


class TransferKind(Enum):
    """Kind of transfer a session was started for"""
    SINGLE_FILE = "SINGLE_FILE"
    MULTI_FILE = "MULTI_FILE"


def kind_for_files(count: int) -> TransferKind:
    return TransferKind.SINGLE_FILE if count == 1 else TransferKind.MULTI_FILE


@dataclass(frozen=True)
class SessionToken:
    """
    Immutable session descriptor.

    The key lives only in memory for the duration of one session; nothing
    in beamlink writes it to disk.
    """
    id: str
    kind: TransferKind
    key: bytes = field(repr=False)
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def generate(cls, kind: TransferKind, params: Optional[Dict[str, str]] = None) -> 'SessionToken':
        """Create a token with a random UUID id and a fresh 256-bit key"""
        merged = dict(params or {})
        merged.setdefault(TRANSPORT_PARAM, TRANSPORT_WIFI)
        return cls(id=str(uuid.uuid4()), kind=kind, key=generate_key(), params=merged)

    @property
    def transport(self) -> str:
        return self.params.get(TRANSPORT_PARAM, TRANSPORT_WIFI)

    @property
    def associated_data(self) -> bytes:
        """Bytes bound to every handshake sealed for this session"""
        return self.id.encode('utf-8')

    def to_record(self) -> dict:
        return {
            'id': self.id,
            'type': self.kind.name,
            'tempKey': encode_key(self.key),
            'params': dict(self.params),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_record(), separators=(',', ':'))

    def to_bytes(self) -> bytes:
        return self.to_json().encode('utf-8')

    @classmethod
    def from_record(cls, data: dict) -> 'SessionToken':
        """
        Rebuild a token from its out-of-band record

        Raises:
            MalformedToken: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise MalformedToken("Token record must be a JSON object")

        token_id = data.get('id')
        if not isinstance(token_id, str) or not token_id:
            raise MalformedToken("Token record has no 'id'")

        try:
            kind = TransferKind[data.get('type')]
        except (KeyError, TypeError):
            raise MalformedToken(f"Unknown transfer type: {data.get('type')!r}") from None

        temp_key = data.get('tempKey')
        if not isinstance(temp_key, str):
            raise MalformedToken("Token record has no 'tempKey'")
        try:
            key = decode_key(temp_key)
        except ValueError as e:
            raise MalformedToken(f"Invalid tempKey encoding: {e}") from None
        if len(key) != KEY_SIZE:
            raise MalformedToken(f"tempKey must decode to {KEY_SIZE} bytes, got {len(key)}")

        raw_params = data.get('params', {})
        if not isinstance(raw_params, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in raw_params.items()):
            raise MalformedToken("'params' must map strings to strings")
        params = dict(raw_params)
        params.setdefault(TRANSPORT_PARAM, TRANSPORT_WIFI)

        return cls(id=token_id, kind=kind, key=key, params=params)

    @classmethod
    def from_json(cls, text) -> 'SessionToken':
        if isinstance(text, (bytes, bytearray)):
            try:
                text = bytes(text).decode('utf-8')
            except UnicodeDecodeError as e:
                raise MalformedToken(f"Token record is not UTF-8: {e}") from None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedToken(f"Invalid token JSON: {e}") from None
        return cls.from_record(data)
