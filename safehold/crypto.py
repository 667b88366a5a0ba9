"""
SafeHold - Cryptography Module

All cryptographic operations for the credential store live in this one file:
- Envelope format (header + nonce + ciphertext) and its parser
- Authenticated encryption with two AEAD profiles
- Password key derivation (scrypt) and subkey derivation (HKDF)
- Buffer wiping for keys and plaintexts

Security Architecture:
    Unlocked project:  app key (random 32 bytes) → AES-256-GCM
    Locked project:    password → scrypt → root key → HKDF → content key
                       → ChaCha20-Poly1305
    Verifier:          root key → HKDF → check key (stored, never the password)

Why the header is associated data:
    - Algorithm id, format version and KDF parameters are authenticated
    - Flipping any header byte makes decryption fail, the same as a ciphertext
      bit flip, so a tampered header can never steer us to a weaker path
"""

import os
import hmac
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import AuthenticationError, Corrupted


# =============================================================================
# Configuration
# =============================================================================

KEY_SIZE = 32            # 256-bit keys for both AEAD profiles
NONCE_SIZE = 12          # 96-bit nonce (AES-GCM and ChaCha20-Poly1305)
TAG_SIZE = 16            # 128-bit authentication tag
SALT_SIZE = 16

# scrypt defaults for newly created locks
# N = CPU/memory cost (power of 2), r = block size, p = parallelization
SCRYPT_LOG2_N = 17       # N = 131072, 128 * N * r bytes = 128 MiB of RAM
SCRYPT_R = 8
SCRYPT_P = 1

MAGIC = b"SHLD"
FORMAT_VERSION = 1
SUPPORTED_VERSIONS = (1,)

KDF_NONE = 0
KDF_SCRYPT = 1

_FIXED_HEADER = struct.Struct(">4sBBB")     # magic, version, algorithm, kdf id
_SCRYPT_TAIL = struct.Struct(">BBB")        # log2_n, r, p

Buffer = Union[bytes, bytearray, memoryview]


class Algorithm(IntEnum):
    """AEAD profile identifiers, as stored in the envelope header."""
    AES_256_GCM = 1          # app-managed key (unlocked projects)
    CHACHA20_POLY1305 = 2    # password-derived key (locked projects)


_CIPHERS = {
    Algorithm.AES_256_GCM: AESGCM,
    Algorithm.CHACHA20_POLY1305: ChaCha20Poly1305,
}


@dataclass(frozen=True)
class KdfParams:
    """Everything except the password needed to re-derive a key."""
    salt: bytes
    log2_n: int = SCRYPT_LOG2_N
    r: int = SCRYPT_R
    p: int = SCRYPT_P

    @property
    def n(self) -> int:
        return 1 << self.log2_n

    def to_dict(self) -> dict:
        return {
            "kdf": "scrypt",
            "salt": self.salt.hex(),
            "log2_n": self.log2_n,
            "r": self.r,
            "p": self.p,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "KdfParams":
        try:
            if data.get("kdf", "scrypt") != "scrypt":
                raise ValueError(f"unsupported kdf {data.get('kdf')!r}")
            return cls(
                salt=bytes.fromhex(data["salt"]),
                log2_n=int(data["log2_n"]),
                r=int(data["r"]),
                p=int(data["p"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise Corrupted(f"invalid key parameters: {e}") from e


@dataclass(frozen=True)
class Envelope:
    """Parsed envelope. ``header`` is the exact byte prefix used as AD."""
    version: int
    algorithm: Algorithm
    kdf: Optional[KdfParams]
    nonce: bytes
    ciphertext: bytes
    header: bytes


# =============================================================================
# Buffer Hygiene
# =============================================================================

def wipe(buf: Optional[bytearray]) -> None:
    """
    Overwrite a mutable buffer with zeros in place.

    Only bytearray can be wiped. Python bytes and str are immutable and stay
    in memory until the garbage collector reuses them, which is why every
    key and plaintext in this package is held as a bytearray.
    """
    if buf is None:
        return
    buf[:] = bytes(len(buf))


def constant_compare(a: Buffer, b: Buffer) -> bool:
    """Compare two byte strings in constant time."""
    return hmac.compare_digest(bytes(a), bytes(b))


# =============================================================================
# Key Derivation
# =============================================================================

def new_kdf_params(log2_n: int = SCRYPT_LOG2_N, r: int = SCRYPT_R, p: int = SCRYPT_P) -> KdfParams:
    """Fresh random salt with the given scrypt cost."""
    return KdfParams(salt=os.urandom(SALT_SIZE), log2_n=log2_n, r=r, p=p)


def derive_root_key(password: str, params: KdfParams) -> bytearray:
    """
    Derive the 32-byte root key from a password using scrypt.

    Why scrypt?
    - Memory-hard: every guess costs 128 * N * r bytes of RAM
    - Same password + same params always gives the same key

    Args:
        password: User's secret (never stored)
        params: Salt and cost, stored next to the ciphertext

    Returns:
        32-byte root key as a wipeable bytearray
    """
    secret = bytearray(password.encode("utf-8"))
    try:
        kdf = Scrypt(
            salt=params.salt,
            length=KEY_SIZE,
            n=params.n,
            r=params.r,
            p=params.p,
        )
        return bytearray(kdf.derive(secret))
    finally:
        wipe(secret)


def derive_subkeys(root_key: Buffer) -> dict:
    """
    Split a root key into independent subkeys using HKDF.

    Returns:
        Dictionary with:
        - content_key: encrypts the project file
        - check_key: stored as the password verifier
    """
    def hkdf(info: str) -> bytearray:
        h = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=info.encode("utf-8"),
        )
        return bytearray(h.derive(root_key))

    return {
        "content_key": hkdf("safehold-content-v1"),
        "check_key": hkdf("safehold-check-v1"),
    }


# =============================================================================
# Envelope Encoding
# =============================================================================

def encode_header(algorithm: Algorithm, kdf: Optional[KdfParams] = None,
                  version: int = FORMAT_VERSION) -> bytes:
    """Serialize the envelope header (also used as associated data)."""
    if kdf is None:
        return _FIXED_HEADER.pack(MAGIC, version, int(algorithm), KDF_NONE)
    return (
        _FIXED_HEADER.pack(MAGIC, version, int(algorithm), KDF_SCRYPT)
        + bytes([len(kdf.salt)])
        + kdf.salt
        + _SCRYPT_TAIL.pack(kdf.log2_n, kdf.r, kdf.p)
    )


def parse_envelope(blob: Buffer) -> Envelope:
    """
    Split an envelope into its fields without decrypting.

    Raises:
        Corrupted: bad magic, unsupported version/algorithm/KDF, or truncation
    """
    data = bytes(blob)
    if len(data) < _FIXED_HEADER.size:
        raise Corrupted("envelope too short")

    magic, version, algorithm_id, kdf_id = _FIXED_HEADER.unpack_from(data, 0)
    if magic != MAGIC:
        raise Corrupted("not a SafeHold envelope")
    if version not in SUPPORTED_VERSIONS:
        raise Corrupted(f"unsupported format version {version}")
    try:
        algorithm = Algorithm(algorithm_id)
    except ValueError:
        raise Corrupted(f"unknown algorithm id {algorithm_id}") from None

    offset = _FIXED_HEADER.size
    kdf = None
    if kdf_id == KDF_SCRYPT:
        if len(data) < offset + 1:
            raise Corrupted("truncated KDF parameters")
        salt_len = data[offset]
        offset += 1
        end = offset + salt_len + _SCRYPT_TAIL.size
        if salt_len == 0 or len(data) < end:
            raise Corrupted("truncated KDF parameters")
        salt = data[offset:offset + salt_len]
        log2_n, r, p = _SCRYPT_TAIL.unpack_from(data, offset + salt_len)
        kdf = KdfParams(salt=salt, log2_n=log2_n, r=r, p=p)
        offset = end
    elif kdf_id != KDF_NONE:
        raise Corrupted(f"unknown KDF id {kdf_id}")

    if len(data) < offset + NONCE_SIZE + TAG_SIZE:
        raise Corrupted("truncated ciphertext")

    return Envelope(
        version=version,
        algorithm=algorithm,
        kdf=kdf,
        nonce=data[offset:offset + NONCE_SIZE],
        ciphertext=data[offset + NONCE_SIZE:],
        header=data[:offset],
    )


# =============================================================================
# Encryption
# =============================================================================

def seal(plaintext: Buffer, key: Buffer, algorithm: Algorithm,
         kdf: Optional[KdfParams] = None) -> bytes:
    """
    Encrypt plaintext into a self-describing envelope.

    A new random nonce is generated on every call, so sealing the same
    plaintext twice never produces the same bytes.

    Args:
        plaintext: Data to encrypt
        key: 32-byte key for ``algorithm``
        algorithm: AEAD profile to use
        kdf: Parameters that re-derive ``key`` from a password (locked only)

    Returns:
        header || nonce || ciphertext+tag
    """
    if len(key) != KEY_SIZE:
        raise ValueError("key must be 32 bytes")
    header = encode_header(algorithm, kdf)
    nonce = os.urandom(NONCE_SIZE)
    cipher = _CIPHERS[algorithm](key)
    return header + nonce + cipher.encrypt(nonce, plaintext, header)


def unseal(blob: Buffer, key: Buffer) -> bytearray:
    """
    Decrypt an envelope produced by seal().

    Fails closed: either the full authenticated plaintext comes back, or an
    exception is raised.

    Raises:
        Corrupted: the envelope cannot be parsed
        AuthenticationError: wrong key, or any bit of header/nonce/ciphertext
            was modified
    """
    envelope = parse_envelope(blob)
    if len(key) != KEY_SIZE:
        raise AuthenticationError("key has the wrong size")
    cipher = _CIPHERS[envelope.algorithm](key)
    try:
        plaintext = cipher.decrypt(envelope.nonce, envelope.ciphertext, envelope.header)
    except InvalidTag:
        raise AuthenticationError("authentication tag mismatch") from None
    return bytearray(plaintext)
