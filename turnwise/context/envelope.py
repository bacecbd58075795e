"""Self-describing on-disk envelope for a single ChatMessage.

Two layouts, distinguished by ``alg``:

    {"alg": "PLAINTEXT", "content": {<ChatMessage>}}
    {"alg": "AES-256-GCM", "iv": <b64 12B>, "content": <b64 ciphertext>, "tag": <b64 16B>}

A bare ChatMessage object (no ``alg``) is accepted on read for records written before
envelopes existed.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ValidationError

from turnwise.exceptions import EnvelopeError
from turnwise.models import ChatMessage

PLAINTEXT = "PLAINTEXT"
AES_256_GCM = "AES-256-GCM"

_NONCE_BYTES = 12  # 96-bit nonce for GCM
_TAG_BYTES = 16


class Envelope(BaseModel):
    alg: str
    iv: str | None = None
    content: Any
    tag: str | None = None


def derive_key(secret: str | None) -> bytes | None:
    """SHA-256 of a non-blank secret string gives the 32-byte AES key. Blank disables encryption."""
    if secret is None or not secret.strip():
        return None
    return hashlib.sha256(secret.encode("utf-8")).digest()


def seal(message: ChatMessage, key: bytes | None) -> str:
    """Wrap a message in an envelope and return its compact JSON text."""
    if key is None:
        envelope = Envelope(alg=PLAINTEXT, content=message.model_dump(mode="json"))
    else:
        nonce = secrets.token_bytes(_NONCE_BYTES)
        plaintext = message.model_dump_json().encode("utf-8")
        # AESGCM appends the tag to the ciphertext; the envelope stores them apart
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        envelope = Envelope(
            alg=AES_256_GCM,
            iv=_b64(nonce),
            content=_b64(sealed[:-_TAG_BYTES]),
            tag=_b64(sealed[-_TAG_BYTES:]),
        )
    return envelope.model_dump_json(exclude_none=True)


def open_envelope(raw: str | bytes, key: bytes | None) -> ChatMessage:
    """Decode one stored record. Raises EnvelopeError for anything unreadable."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise EnvelopeError("record is not valid JSON") from exc
    except RecursionError as exc:
        raise EnvelopeError("record is nested too deeply") from exc
    if not isinstance(data, dict):
        raise EnvelopeError("record is not a JSON object")

    if "alg" not in data:
        return _validate_message(data)

    try:
        envelope = Envelope.model_validate(data)
    except ValidationError as exc:
        raise EnvelopeError("malformed envelope") from exc

    alg = envelope.alg.upper()
    if alg == PLAINTEXT:
        return _validate_message(envelope.content)
    if alg == AES_256_GCM:
        return _validate_message_json(_decrypt(envelope, key))
    raise EnvelopeError(f"unsupported envelope algorithm {envelope.alg!r}")


def _decrypt(envelope: Envelope, key: bytes | None) -> bytes:
    if key is None:
        raise EnvelopeError("encrypted record but no key configured")
    if envelope.iv is None or envelope.tag is None or not isinstance(envelope.content, str):
        raise EnvelopeError("encrypted envelope is missing iv, tag or content")
    try:
        nonce = base64.b64decode(envelope.iv, validate=True)
        ciphertext = base64.b64decode(envelope.content, validate=True)
        tag = base64.b64decode(envelope.tag, validate=True)
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except (binascii.Error, ValueError) as exc:
        raise EnvelopeError("corrupt encrypted envelope") from exc
    except InvalidTag as exc:
        raise EnvelopeError("decryption failed (wrong key or tampered record)") from exc


def _validate_message(data: Any) -> ChatMessage:
    try:
        return ChatMessage.model_validate(data)
    except ValidationError as exc:
        raise EnvelopeError("payload is not a valid chat message") from exc


def _validate_message_json(payload: bytes) -> ChatMessage:
    try:
        return ChatMessage.model_validate_json(payload)
    except ValidationError as exc:
        raise EnvelopeError("payload is not a valid chat message") from exc


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
