"""
Authenticated encryption for the session handshake

Uses AES-256-GCM with the session id as associated data, so a sealed
handshake only opens under the key and session it was created for.
"""
import os
import base64
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from beamlink.common.errors import AuthFailure


# Constants
NONCE_SIZE = 12  # 96 bits for GCM
TAG_SIZE = 16    # 128-bit authentication tag
KEY_SIZE = 32    # 256-bit key


def generate_key() -> bytes:
    """Generate a random 256-bit key"""
    return secrets.token_bytes(KEY_SIZE)


def _check_key(key: bytes):
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")


def seal(key: bytes, plaintext: bytes, associated_data: bytes) -> bytes:
    """
    Encrypt and authenticate data using AES-256-GCM

    Args:
        key: 32-byte session key
        plaintext: Data to encrypt
        associated_data: Data bound to the ciphertext but not encrypted

    Returns:
        nonce (12 bytes) + ciphertext + tag (16 bytes)
    """
    _check_key(key)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data)
    return nonce + ciphertext


def open_sealed(key: bytes, sealed: bytes, associated_data: bytes) -> bytes:
    """
    Verify and decrypt data produced by seal()

    Raises:
        AuthFailure: If the blob is truncated, the key is wrong, the data was
            tampered with, or the associated data differs
    """
    _check_key(key)
    if len(sealed) < NONCE_SIZE + TAG_SIZE:
        raise AuthFailure("Sealed handshake too short")

    nonce = sealed[:NONCE_SIZE]
    try:
        return AESGCM(key).decrypt(nonce, sealed[NONCE_SIZE:], associated_data)
    except InvalidTag:
        raise AuthFailure("Handshake authentication failed") from None


def encode_key(key: bytes) -> str:
    """Encode a key as base64url without padding"""
    return base64.urlsafe_b64encode(key).rstrip(b'=').decode('ascii')


def decode_key(text: str) -> bytes:
    """Decode a base64url key, with or without padding"""
    padded = text + '=' * (-len(text) % 4)
    return base64.b64decode(padded.encode('ascii'), altchars=b'-_', validate=True)
