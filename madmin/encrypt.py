"""Password-based authenticated encryption of admin payloads.

Ciphertext layout: salt (32) | AEAD ID (1) | nonce (8) | encrypted stream.
The stream is split into fragments of up to 16 KiB, each sealed separately
with a sequence-numbered nonce; the last fragment is marked as final.
"""

from __future__ import annotations

import hashlib
import io
import os
import secrets
from typing import BinaryIO, Iterator, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

ARGON2ID_AES_GCM = 0x00
ARGON2ID_CHACHA20_POLY1305 = 0x01
PBKDF2_AES_GCM = 0x02

FIPS_ENV = "MADMIN_FIPS"

_ARGON2ID_TIME = 1
_ARGON2ID_MEMORY = 64 * 1024
_ARGON2ID_THREADS = 4
_PBKDF2_COST = 8192

_KEY_SIZE = 32
_SALT_SIZE = 32
_NONCE_SIZE = 8
_TAG_SIZE = 16
_BUF_SIZE = 1 << 14
_FINAL_FLAG = 0x80

_Aead = Union[AESGCM, ChaCha20Poly1305]


class MaliciousDataError(ValueError):
    """The data cannot be decrypted with the given credentials."""

    def __init__(self, message: str = "data is not authentic") -> None:
        super().__init__(message)


def fips_enabled() -> bool:
    """True when only FIPS 140-2 approved primitives may be used."""
    return os.environ.get(FIPS_ENV, "").strip().lower() in {"1", "true", "yes", "on"}


def _password_bytes(password: str | bytes) -> bytes:
    return password if isinstance(password, bytes) else password.encode("utf-8")


def _argon2id_key(password: str | bytes, salt: bytes) -> bytes:
    try:
        from cryptography.hazmat.primitives.kdf.argon2 import Argon2id
    except ImportError as exc:
        raise RuntimeError("Argon2id key derivation is not available") from exc
    kdf = Argon2id(
        salt=salt,
        length=_KEY_SIZE,
        iterations=_ARGON2ID_TIME,
        lanes=_ARGON2ID_THREADS,
        memory_cost=_ARGON2ID_MEMORY,
    )
    return kdf.derive(_password_bytes(password))


def _pbkdf2_key(password: str | bytes, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac(
        "sha256", _password_bytes(password), salt, _PBKDF2_COST, _KEY_SIZE
    )


def _cipher_for(algorithm_id: int, password: str | bytes, salt: bytes) -> _Aead:
    if algorithm_id == ARGON2ID_AES_GCM:
        return AESGCM(_argon2id_key(password, salt))
    if algorithm_id == ARGON2ID_CHACHA20_POLY1305:
        return ChaCha20Poly1305(_argon2id_key(password, salt))
    if algorithm_id == PBKDF2_AES_GCM:
        return AESGCM(_pbkdf2_key(password, salt))
    raise ValueError("madmin: invalid encryption algorithm ID")


def _fragment_nonce(nonce: bytes, seq: int) -> bytes:
    return nonce + seq.to_bytes(4, "little")


def _header_tag(aead: _Aead, nonce: bytes) -> bytes:
    return aead.encrypt(_fragment_nonce(nonce, 0), b"", None)


def _chunks(data: bytes, size: int) -> Iterator[bytes]:
    return (data[start:start + size] for start in range(0, len(data), size))


def _fragment_ad(tag: bytes, final: bool) -> bytes:
    return bytes([_FINAL_FLAG if final else 0]) + tag


def encrypt_data(password: str | bytes, data: bytes) -> bytes:
    """Encrypt data with a key derived from password and a fresh random salt."""
    salt = secrets.token_bytes(_SALT_SIZE)
    if fips_enabled():
        algorithm_id = PBKDF2_AES_GCM
    else:
        algorithm_id = ARGON2ID_AES_GCM
    aead = _cipher_for(algorithm_id, password, salt)
    nonce = secrets.token_bytes(_NONCE_SIZE)
    tag = _header_tag(aead, nonce)

    fragments = list(_chunks(bytes(data), _BUF_SIZE)) or [b""]
    parts = [salt, bytes([algorithm_id]), nonce]
    for seq, chunk in enumerate(fragments, start=1):
        final = seq == len(fragments)
        parts.append(aead.encrypt(_fragment_nonce(nonce, seq), chunk, _fragment_ad(tag, final)))
    return b"".join(parts)


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = reader.read(size - len(buf))
        if not chunk:
            raise EOFError("unexpected end of ciphertext" if buf else "EOF")
        buf.extend(chunk)
    return bytes(buf)


def decrypt_data(password: str | bytes, data: bytes | BinaryIO) -> bytes:
    """Decrypt ciphertext produced by encrypt_data; data may be bytes or a binary stream."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        reader: BinaryIO = io.BytesIO(bytes(data))
    else:
        reader = data

    salt = _read_exact(reader, _SALT_SIZE)
    algorithm_id = _read_exact(reader, 1)[0]
    nonce = _read_exact(reader, _NONCE_SIZE)

    aead = _cipher_for(algorithm_id, password, salt)
    tag = _header_tag(aead, nonce)

    body = reader.read() or b""
    fragments = list(_chunks(body, _BUF_SIZE + _TAG_SIZE))
    if not fragments:
        raise MaliciousDataError()

    plaintext = []
    for seq, fragment in enumerate(fragments, start=1):
        final = seq == len(fragments)
        try:
            plaintext.append(
                aead.decrypt(_fragment_nonce(nonce, seq), fragment, _fragment_ad(tag, final))
            )
        except InvalidTag as exc:
            raise MaliciousDataError() from exc
    return b"".join(plaintext)