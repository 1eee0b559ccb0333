"""
Handshake messages exchanged at the start of every session.

The sender seals a compact JSON description of the transfer with the
session key, using the session id as associated data:

    {"sessionId": "...", "type": "SINGLE_FILE", "name": "a.txt", "size": 11, "fileCount": 1}

Only the aggregate is described here. Individual file names and sizes
travel in the frame headers that follow.
"""
import json
import logging
from typing import Optional, Sequence, Tuple, Union

from beamlink.common.crypto import seal, open_sealed
from beamlink.common.errors import MalformedHandshake
from beamlink.common.protocol import TransferMetadata
from beamlink.common.session import SessionToken, TransferKind

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("name", "size")


def _safe_json_parse(data: bytes, expected_keys: Optional[Sequence[str]] = None) -> Tuple[bool, Union[dict, str]]:
    """
    Parse a JSON object without raising.

    Returns:
        (True, parsed_dict) on success, (False, error_message) otherwise
    """
    try:
        text = data.decode('utf-8')
    except UnicodeDecodeError as e:
        return False, f"Invalid UTF-8: {e}"

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        return False, f"Invalid JSON: {e}"

    if not isinstance(parsed, dict):
        return False, "Invalid payload: expected a JSON object"

    if expected_keys:
        missing = [k for k in expected_keys if k not in parsed]
        if missing:
            return False, f"Missing keys: {', '.join(missing)}"

    return True, parsed


def _is_count(value) -> bool:
    # bool is an int subclass but never a valid size
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def encode_metadata(metadata: TransferMetadata, session_id: str,
                    kind: TransferKind = TransferKind.SINGLE_FILE) -> bytes:
    """Serialize the aggregate transfer description"""
    body = {
        'sessionId': session_id,
        'type': kind.name,
        'name': metadata.display_name,
        'size': metadata.total_size,
        'fileCount': metadata.count,
    }
    return json.dumps(body, separators=(',', ':')).encode('utf-8')


def decode_metadata(plaintext: bytes) -> TransferMetadata:
    """
    Rebuild the aggregate description. Unknown fields are ignored.

    Raises:
        MalformedHandshake: If a required field is missing or has the wrong type
    """
    ok, result = _safe_json_parse(plaintext, expected_keys=REQUIRED_KEYS)
    if not ok:
        raise MalformedHandshake(result)

    name = result['name']
    size = result['size']
    if not isinstance(name, str):
        raise MalformedHandshake(f"'name' must be a string, got {type(name).__name__}")
    if not _is_count(size):
        raise MalformedHandshake(f"'size' must be a non-negative integer, got {size!r}")

    file_count = result.get('fileCount')
    if file_count is not None and not _is_count(file_count):
        raise MalformedHandshake(f"'fileCount' must be a non-negative integer, got {file_count!r}")

    return TransferMetadata(display_name=name, total_size=size, file_count=file_count)


def create_handshake_message(token: SessionToken, metadata: TransferMetadata) -> bytes:
    """Seal the transfer description for this session"""
    plaintext = encode_metadata(metadata, token.id, token.kind)
    return seal(token.key, plaintext, token.associated_data)


def parse_handshake_message(token: SessionToken, message: bytes) -> TransferMetadata:
    """
    Open and decode a sealed handshake.

    Raises:
        AuthFailure: If the message was not sealed with this token's key and id
        MalformedHandshake: If the opened plaintext is not a valid description
    """
    plaintext = open_sealed(token.key, message, token.associated_data)

    ok, result = _safe_json_parse(plaintext)
    if ok and 'sessionId' in result and result['sessionId'] != token.id:
        raise MalformedHandshake("Handshake names a different session")

    return decode_metadata(plaintext)
