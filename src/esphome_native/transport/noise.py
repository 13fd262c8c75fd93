"""Encrypted transport: ESPHome's Noise_NNpsk0_25519_ChaChaPoly_SHA256 variant.

Frame layout::

    0x01 | len (2 bytes, big-endian) | data

During the handshake ``data`` carries hello and Noise handshake messages.
Afterwards it is ChaCha20-Poly1305 ciphertext of::

    type (2 bytes BE) | payload length (2 bytes BE) | payload

Handshake sequence (client side):
1. Send the empty hello frame, then ``0x00 + noise message 1`` (psk, e)
2. Read server hello: chosen protocol byte, NUL-terminated name and MAC
3. Read handshake reply: status byte, then noise message 2 (e, ee)
4. Split into send/receive cipher states
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import hmac
import logging
import struct
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from esphome_native.const import ESPHOME_NATIVE_MAX_FRAME_SIZE
from esphome_native.protocol.exceptions import (
    FrameTooLargeError,
    InvalidPreambleError,
    MalformedFrameError,
    TransportError,
    TruncatedFrameError,
)
from esphome_native.protocol.frame_codec import NOISE_PREAMBLE, Frame
from esphome_native.transport.exceptions import (
    EncryptionHandshakeError,
    InvalidEncryptionKeyError,
    UnsupportedFeatureError,
)
from esphome_native.transport.types import StreamEndpoint

logger = logging.getLogger(__name__)

PROTOCOL_NAME = b"Noise_NNpsk0_25519_ChaChaPoly_SHA256"
PROLOGUE = b"NoiseAPIInit\x00\x00"
NOISE_HELLO = b"\x01\x00\x00"
NOISE_PROTOCOL_ID = 0x01
HANDSHAKE_MAC_FAILURE = "Handshake MAC failure"

PSK_LENGTH = 32
DH_LENGTH = 32
HASH_LENGTH = 32
TAG_LENGTH = 16
MAX_NOISE_FRAME = 0xFFFF
_INNER_HEADER = struct.Struct(">HH")
_MAX_NONCE = (1 << 64) - 1


def decode_psk(noise_psk: str) -> bytes:
    """Decode the device's base64 encryption key.

    Raises:
        InvalidEncryptionKeyError: Not base64, or not 32 bytes once decoded
    """
    try:
        psk = base64.b64decode(noise_psk, validate=True)
    except (binascii.Error, ValueError) as err:
        raise InvalidEncryptionKeyError("encryption key is not valid base64") from err
    if len(psk) != PSK_LENGTH:
        raise InvalidEncryptionKeyError(f"encryption key must be {PSK_LENGTH} bytes, got {len(psk)}")
    return psk


def _hkdf(chaining_key: bytes, input_key_material: bytes, outputs: int) -> list[bytes]:
    temp_key = hmac.new(chaining_key, input_key_material, hashlib.sha256).digest()
    results: list[bytes] = []
    previous = b""
    for index in range(1, outputs + 1):
        previous = hmac.new(temp_key, previous + bytes((index,)), hashlib.sha256).digest()
        results.append(previous)
    return results


def _public_bytes(key: X25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


class CipherState:
    """ChaCha20-Poly1305 key plus a 64-bit message counter."""

    def __init__(self, key: bytes | None = None) -> None:
        self._aead = ChaCha20Poly1305(key) if key is not None else None
        self.nonce = 0

    @property
    def has_key(self) -> bool:
        return self._aead is not None

    def _nonce_bytes(self) -> bytes:
        if self.nonce >= _MAX_NONCE:
            msg = "noise nonce exhausted"
            raise EncryptionHandshakeError(msg)
        return b"\x00\x00\x00\x00" + self.nonce.to_bytes(8, "little")

    def encrypt_with_ad(self, associated_data: bytes, plaintext: bytes) -> bytes:
        if self._aead is None:
            return plaintext
        ciphertext = self._aead.encrypt(self._nonce_bytes(), plaintext, associated_data)
        self.nonce += 1
        return ciphertext

    def decrypt_with_ad(self, associated_data: bytes, ciphertext: bytes) -> bytes:
        """Decrypt and advance the counter; raises ``InvalidTag`` on a bad MAC."""
        if self._aead is None:
            return ciphertext
        plaintext = self._aead.decrypt(self._nonce_bytes(), ciphertext, associated_data)
        self.nonce += 1
        return plaintext


class SymmetricState:
    def __init__(self, protocol_name: bytes) -> None:
        if len(protocol_name) <= HASH_LENGTH:
            self.handshake_hash = protocol_name.ljust(HASH_LENGTH, b"\x00")
        else:
            self.handshake_hash = hashlib.sha256(protocol_name).digest()
        self.chaining_key = self.handshake_hash
        self.cipher = CipherState()

    def mix_key(self, input_key_material: bytes) -> None:
        self.chaining_key, temp_key = _hkdf(self.chaining_key, input_key_material, 2)
        self.cipher = CipherState(temp_key)

    def mix_hash(self, data: bytes) -> None:
        self.handshake_hash = hashlib.sha256(self.handshake_hash + data).digest()

    def mix_key_and_hash(self, input_key_material: bytes) -> None:
        self.chaining_key, temp_hash, temp_key = _hkdf(self.chaining_key, input_key_material, 3)
        self.mix_hash(temp_hash)
        self.cipher = CipherState(temp_key)

    def encrypt_and_hash(self, plaintext: bytes) -> bytes:
        ciphertext = self.cipher.encrypt_with_ad(self.handshake_hash, plaintext)
        self.mix_hash(ciphertext)
        return ciphertext

    def decrypt_and_hash(self, ciphertext: bytes) -> bytes:
        plaintext = self.cipher.decrypt_with_ad(self.handshake_hash, ciphertext)
        self.mix_hash(ciphertext)
        return plaintext

    def split(self) -> tuple[CipherState, CipherState]:
        first, second = _hkdf(self.chaining_key, b"", 2)
        return CipherState(first), CipherState(second)


class NoiseHandshakeState:
    """NNpsk0 handshake for either role.

    Pattern::

        -> psk, e
        <- e, ee

    The initiator writes the first message; the responder role exists so the
    same code can play the device in tests.
    """

    def __init__(
        self,
        *,
        initiator: bool,
        psk: bytes,
        prologue: bytes = PROLOGUE,
        ephemeral: X25519PrivateKey | None = None,
    ) -> None:
        if len(psk) != PSK_LENGTH:
            raise InvalidEncryptionKeyError(f"pre-shared key must be {PSK_LENGTH} bytes")
        self.initiator = initiator
        self._psk = psk
        self._ephemeral = ephemeral or X25519PrivateKey.generate()
        self._remote_ephemeral: X25519PublicKey | None = None
        self._symmetric = SymmetricState(PROTOCOL_NAME)
        self._symmetric.mix_hash(prologue)
        self._message_index = 0
        self._ciphers: tuple[CipherState, CipherState] | None = None

    @property
    def complete(self) -> bool:
        return self._ciphers is not None

    def _write_ephemeral(self) -> bytes:
        public = _public_bytes(self._ephemeral)
        self._symmetric.mix_hash(public)
        # psk handshakes also mix the ephemeral key into the cipher key
        self._symmetric.mix_key(public)
        return public

    def _read_ephemeral(self, message: bytes) -> bytes:
        if len(message) < DH_LENGTH:
            raise EncryptionHandshakeError("handshake message shorter than ephemeral key")
        public = message[:DH_LENGTH]
        self._remote_ephemeral = X25519PublicKey.from_public_bytes(public)
        self._symmetric.mix_hash(public)
        self._symmetric.mix_key(public)
        return message[DH_LENGTH:]

    def _mix_ee(self) -> None:
        if self._remote_ephemeral is None:
            raise EncryptionHandshakeError("remote ephemeral key missing")
        try:
            shared = self._ephemeral.exchange(self._remote_ephemeral)
        except ValueError as err:
            raise EncryptionHandshakeError("invalid remote ephemeral key") from err
        self._symmetric.mix_key(shared)

    def _split(self) -> None:
        first, second = self._symmetric.split()
        self._ciphers = (first, second) if self.initiator else (second, first)

    def write_message(self, payload: bytes = b"") -> bytes:
        if self._message_index == 0 and self.initiator:
            self._symmetric.mix_key_and_hash(self._psk)
            message = self._write_ephemeral()
            message += self._symmetric.encrypt_and_hash(payload)
        elif self._message_index == 1 and not self.initiator:
            message = self._write_ephemeral()
            self._mix_ee()
            message += self._symmetric.encrypt_and_hash(payload)
            self._split()
        else:
            raise EncryptionHandshakeError(f"unexpected write at handshake step {self._message_index}")
        self._message_index += 1
        return message

    def read_message(self, message: bytes) -> bytes:
        """Process a peer handshake message; raises ``InvalidTag`` on a key mismatch."""
        if self._message_index == 0 and not self.initiator:
            self._symmetric.mix_key_and_hash(self._psk)
            remainder = self._read_ephemeral(message)
            payload = self._symmetric.decrypt_and_hash(remainder)
        elif self._message_index == 1 and self.initiator:
            remainder = self._read_ephemeral(message)
            self._mix_ee()
            payload = self._symmetric.decrypt_and_hash(remainder)
            self._split()
        else:
            raise EncryptionHandshakeError(f"unexpected read at handshake step {self._message_index}")
        self._message_index += 1
        return payload

    def split_ciphers(self) -> tuple[CipherState, CipherState]:
        """Return ``(send, receive)`` cipher states for this role."""
        if self._ciphers is None:
            raise EncryptionHandshakeError("handshake not complete")
        return self._ciphers


def encode_noise_frame(data: bytes) -> bytes:
    if len(data) > MAX_NOISE_FRAME:
        msg = f"noise frame of {len(data)} bytes exceeds {MAX_NOISE_FRAME}"
        raise ValueError(msg)
    return bytes((NOISE_PREAMBLE, len(data) >> 8, len(data) & 0xFF)) + data


async def read_noise_frame(
    reader: asyncio.StreamReader,
    max_frame_size: int = ESPHOME_NATIVE_MAX_FRAME_SIZE,
) -> bytes:
    """Read one ``0x01``-prefixed frame and return its data bytes.

    Raises:
        TransportError: Stream closed at a frame boundary, or read failed
        TruncatedFrameError: Stream closed mid-frame
        InvalidPreambleError: First byte is not 0x01
        FrameTooLargeError: Declared length above ``max_frame_size``
    """
    try:
        try:
            header = await reader.readexactly(3)
        except asyncio.IncompleteReadError as err:
            if not err.partial:
                raise TransportError("connection_closed_by_peer") from err
            raise TruncatedFrameError(3, len(err.partial), err.partial) from err

        if header[0] != NOISE_PREAMBLE:
            raise InvalidPreambleError(header[0])

        length = (header[1] << 8) | header[2]
        if length > max_frame_size:
            raise FrameTooLargeError(length, max_frame_size)

        try:
            return await reader.readexactly(length) if length else b""
        except asyncio.IncompleteReadError as err:
            raise TruncatedFrameError(length, len(err.partial), err.partial) from err
    except OSError as err:
        raise TransportError(f"read_failed: {err}") from err


class NoiseFrameCodec:
    """Frame codec for an established encrypted connection.

    ``encode`` advances the send nonce, so frames must be written in the
    order they were encoded (the frame channel's writer lock ensures this).
    """

    def __init__(
        self,
        send_cipher: CipherState,
        receive_cipher: CipherState,
        max_frame_size: int = ESPHOME_NATIVE_MAX_FRAME_SIZE,
    ) -> None:
        self._send = send_cipher
        self._receive = receive_cipher
        self.max_frame_size = max_frame_size

    def encode(self, type_tag: int, payload: bytes) -> bytes:
        if type_tag > 0xFFFF or len(payload) > 0xFFFF:
            msg = f"type {type_tag} with {len(payload)} byte payload does not fit a noise frame"
            raise ValueError(msg)
        plaintext = _INNER_HEADER.pack(type_tag, len(payload)) + payload
        return encode_noise_frame(self._send.encrypt_with_ad(b"", plaintext))

    async def read_frame(self, reader: asyncio.StreamReader) -> Frame:
        data = await read_noise_frame(reader, self.max_frame_size)
        try:
            plaintext = self._receive.decrypt_with_ad(b"", data)
        except InvalidTag as err:
            raise MalformedFrameError("decrypt_failed", data) from err

        if len(plaintext) < _INNER_HEADER.size:
            raise MalformedFrameError("inner_header_too_short", plaintext)
        type_tag, length = _INNER_HEADER.unpack_from(plaintext)
        if _INNER_HEADER.size + length > len(plaintext):
            raise MalformedFrameError("inner_length_exceeds_frame", plaintext)
        return Frame(type_tag=type_tag, payload=plaintext[_INNER_HEADER.size : _INNER_HEADER.size + length])

    def __repr__(self) -> str:
        return f"NoiseFrameCodec(max_frame_size={self.max_frame_size})"


@dataclass(frozen=True)
class ServerHello:
    protocol: int
    name: str
    mac_address: str


def parse_server_hello(data: bytes) -> ServerHello:
    if not data:
        raise EncryptionHandshakeError("empty server hello")
    parts = data[1:].split(b"\x00")
    name = parts[0].decode("utf-8", errors="replace") if parts else ""
    mac_address = parts[1].decode("utf-8", errors="replace") if len(parts) > 1 else ""
    return ServerHello(protocol=data[0], name=name, mac_address=mac_address)


async def perform_noise_handshake(
    endpoint: StreamEndpoint,
    noise_psk: str,
    *,
    expected_name: str | None = None,
    max_frame_size: int = ESPHOME_NATIVE_MAX_FRAME_SIZE,
) -> tuple[NoiseFrameCodec, ServerHello]:
    """Run the client side of the Noise handshake on a fresh stream.

    Raises:
        InvalidEncryptionKeyError: Key malformed or rejected by the device
        UnsupportedFeatureError: Device does not offer the Noise protocol
        EncryptionHandshakeError: Device refused the handshake or name mismatch
        TransportError: Stream failed or closed during the exchange
    """
    state = NoiseHandshakeState(initiator=True, psk=decode_psk(noise_psk))
    message = state.write_message()

    logger.debug("→ Sending noise hello and handshake", extra={"peer": endpoint.peer})
    try:
        endpoint.writer.write(NOISE_HELLO + encode_noise_frame(b"\x00" + message))
        await endpoint.writer.drain()
    except OSError as err:
        raise TransportError(f"write_failed: {err}") from err

    try:
        hello = parse_server_hello(await read_noise_frame(endpoint.reader, max_frame_size))
    except InvalidPreambleError as err:
        if err.preamble == 0x00:
            raise UnsupportedFeatureError("noise_encryption", "server_requires_plaintext") from err
        raise

    if hello.protocol != NOISE_PROTOCOL_ID:
        raise UnsupportedFeatureError("noise_encryption", f"server_selected_protocol_{hello.protocol}")
    if expected_name and hello.name and hello.name != expected_name:
        raise EncryptionHandshakeError(f"server_name_mismatch: expected {expected_name}, got {hello.name}")

    reply = await read_noise_frame(endpoint.reader, max_frame_size)
    if not reply:
        raise EncryptionHandshakeError("empty handshake reply")
    if reply[0] != 0:
        explanation = reply[1:].decode("utf-8", errors="replace")
        if explanation == HANDSHAKE_MAC_FAILURE:
            raise InvalidEncryptionKeyError(explanation)
        raise EncryptionHandshakeError(explanation)

    try:
        state.read_message(reply[1:])
    except InvalidTag as err:
        raise InvalidEncryptionKeyError("handshake reply failed authentication") from err

    send_cipher, receive_cipher = state.split_ciphers()
    logger.debug(
        "✓ Noise handshake complete",
        extra={"peer": endpoint.peer, "server_name": hello.name},
    )
    return NoiseFrameCodec(send_cipher, receive_cipher, max_frame_size), hello
