"""
Web Push Delivery
=================

VAPID-authenticated, aes128gcm-encrypted Web Push.

VAPID (RFC 8292):
    JWT header {typ: JWT, alg: ES256}
    claims     {aud: <endpoint origin>, exp: now + 12h, sub: <contact>}
    signature  raw r || s (64 bytes), base64url
    header     Authorization: vapid t=<jwt>, k=<server public key>

Payload encryption (RFC 8291 over RFC 8188):
    ecdh_secret = ECDH(ephemeral private, subscriber p256dh)
    IKM   = HKDF(salt=auth, ikm=ecdh_secret,
                 info="WebPush: info\\0" || ua_public || as_public, 32)
    CEK   = HKDF(salt=salt, ikm=IKM, info="Content-Encoding: aes128gcm\\0", 16)
    NONCE = HKDF(salt=salt, ikm=IKM, info="Content-Encoding: nonce\\0", 12)
    body  = salt(16) || rs(4, BE) || idlen(1) || as_public(65)
            || AES-128-GCM(CEK, NONCE, payload || 0x02)

Only single-record messages are produced (payload + 17 bytes <= rs).
"""

import base64
import json
import logging
import os
import time
from http.client import HTTPException
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.error import HTTPError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from aurora_sentinel.config import API_TIMEOUT_SEC, PUSH_TTL_SEC, VAPID_EXPIRY_SEC, Settings
from aurora_sentinel.errors import ConfigMissing, PushGone, PushTransient

log = logging.getLogger('aurora_sentinel.webpush')

RECORD_SIZE = 4096
SALT_LENGTH = 16
TAG_LENGTH = 16
PADDING_DELIMITER = b'\x02'
GONE_STATUSES = (404, 410)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def b64url_decode(data: str) -> bytes:
    """Decode base64url with or without padding (standard alphabet tolerated)."""
    s = data.strip().replace('+', '-').replace('/', '_')
    return base64.urlsafe_b64decode(s + '=' * (-len(s) % 4))


def _public_bytes(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(serialization.Encoding.X962,
                            serialization.PublicFormat.UncompressedPoint)


def _hkdf(salt: bytes, ikm: bytes, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


# =============================================================================
# VAPID
# =============================================================================

def generate_vapid_keys() -> tuple[str, str]:
    """
    New P-256 key pair for VAPID.

    Returns:
        (private, public): base64url raw 32-byte scalar and 65-byte
        uncompressed point, the formats browsers expect for
        applicationServerKey
    """
    key = ec.generate_private_key(ec.SECP256R1())
    private = key.private_numbers().private_value.to_bytes(32, 'big')
    return b64url_encode(private), b64url_encode(_public_bytes(key.public_key()))


class VapidSigner:
    """Signs VAPID JWTs with the service's P-256 key."""

    def __init__(self, private_key: str, contact: str,
                 expiry_sec: int = VAPID_EXPIRY_SEC,
                 clock: Callable[[], float] = time.time):
        raw = b64url_decode(private_key)
        if len(raw) != 32:
            raise ValueError(f"VAPID private key must be 32 bytes, got {len(raw)}")
        self._key = ec.derive_private_key(int.from_bytes(raw, 'big'), ec.SECP256R1())
        self.public_key = b64url_encode(_public_bytes(self._key.public_key()))
        self.contact = contact
        self.expiry_sec = expiry_sec
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> 'VapidSigner':
        if not settings.push_enabled:
            raise ConfigMissing("VAPID_PRIVATE_KEY / VAPID_PUBLIC_KEY not configured")
        signer = cls(settings.vapid_private_key, settings.vapid_contact)
        if signer.public_key != b64url_encode(b64url_decode(settings.vapid_public_key)):
            log.warning("VAPID_PUBLIC_KEY does not match the private key; using the derived key")
        return signer

    @staticmethod
    def audience(endpoint: str) -> str:
        parts = urlparse(endpoint)
        return f"{parts.scheme}://{parts.netloc}"

    def sign(self, endpoint: str) -> str:
        """Compact ES256 JWT for the endpoint's origin."""
        header = {'typ': 'JWT', 'alg': 'ES256'}
        claims = {
            'aud': self.audience(endpoint),
            'exp': int(self.clock()) + self.expiry_sec,
            'sub': self.contact,
        }
        signing_input = '.'.join(
            b64url_encode(json.dumps(part, separators=(',', ':')).encode())
            for part in (header, claims)
        )
        der = self._key.sign(signing_input.encode('ascii'), ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        signature = r.to_bytes(32, 'big') + s.to_bytes(32, 'big')
        return f"{signing_input}.{b64url_encode(signature)}"

    def authorization(self, endpoint: str) -> str:
        return f"vapid t={self.sign(endpoint)}, k={self.public_key}"


# =============================================================================
# PAYLOAD ENCRYPTION
# =============================================================================

def encrypt_payload(payload: bytes, p256dh: str, auth: str,
                    salt: Optional[bytes] = None,
                    ephemeral_key: Optional[ec.EllipticCurvePrivateKey] = None,
                    record_size: int = RECORD_SIZE) -> bytes:
    """
    Encrypt a push message body for one subscriber (aes128gcm).

    Args:
        payload: Plaintext bytes (typically UTF-8 JSON)
        p256dh: Subscriber public key, base64url uncompressed P-256 point
        auth: Subscriber auth secret, base64url (16 bytes)
        salt: 16 random bytes (generated when omitted)
        ephemeral_key: Sender key pair (generated when omitted)

    Raises:
        ValueError: malformed keys or payload too large for one record
    """
    ua_public = b64url_decode(p256dh)
    auth_secret = b64url_decode(auth)
    if len(ua_public) != 65 or ua_public[0] != 0x04:
        raise ValueError("p256dh must be a 65-byte uncompressed P-256 point")
    if len(auth_secret) != 16:
        raise ValueError(f"auth secret must be 16 bytes, got {len(auth_secret)}")
    if len(payload) + len(PADDING_DELIMITER) + TAG_LENGTH > record_size:
        raise ValueError(f"payload of {len(payload)} bytes does not fit one {record_size}-byte record")

    salt = salt if salt is not None else os.urandom(SALT_LENGTH)
    ephemeral_key = ephemeral_key or ec.generate_private_key(ec.SECP256R1())
    as_public = _public_bytes(ephemeral_key.public_key())

    ua_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), ua_public)
    ecdh_secret = ephemeral_key.exchange(ec.ECDH(), ua_key)

    ikm = _hkdf(auth_secret, ecdh_secret, b'WebPush: info\x00' + ua_public + as_public, 32)
    cek = _hkdf(salt, ikm, b'Content-Encoding: aes128gcm\x00', 16)
    nonce = _hkdf(salt, ikm, b'Content-Encoding: nonce\x00', 12)

    ciphertext = AESGCM(cek).encrypt(nonce, payload + PADDING_DELIMITER, None)
    header = salt + record_size.to_bytes(4, 'big') + bytes([len(as_public)]) + as_public
    return header + ciphertext


# =============================================================================
# SENDER
# =============================================================================

@dataclass
class DeliveryResult:
    endpoint: str
    status: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _encode_payload(payload) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode('utf-8')
    return json.dumps(payload, separators=(',', ':')).encode('utf-8')


class WebPushSender:
    """POSTs encrypted messages to push service endpoints."""

    def __init__(self, signer: VapidSigner, ttl: int = PUSH_TTL_SEC,
                 timeout: int = API_TIMEOUT_SEC, opener: Callable = urlopen):
        self.signer = signer
        self.ttl = ttl
        self.timeout = timeout
        self.opener = opener

    def build_request(self, subscription, payload) -> Request:
        body = encrypt_payload(_encode_payload(payload), subscription.p256dh, subscription.auth)
        headers = {
            'Authorization': self.signer.authorization(subscription.endpoint),
            'Content-Encoding': 'aes128gcm',
            'Content-Type': 'application/octet-stream',
            'TTL': str(self.ttl),
        }
        return Request(subscription.endpoint, data=body, headers=headers, method='POST')

    def send(self, subscription, payload) -> DeliveryResult:
        """
        Deliver one message.

        Raises:
            PushGone: endpoint answered 404/410 (subscription is dead)
            PushTransient: any other failure
        """
        request = self.build_request(subscription, payload)
        endpoint = subscription.endpoint
        try:
            with self.opener(request, timeout=self.timeout) as response:
                status = response.status
        except HTTPError as e:
            body = e.read().decode('utf-8', errors='replace') if e.fp else ''
            if e.code in GONE_STATUSES:
                raise PushGone(endpoint, e.code, body) from e
            raise PushTransient(endpoint, e.code, body) from e
        except (OSError, HTTPException) as e:
            raise PushTransient(endpoint, 0, str(e)) from e

        if status in GONE_STATUSES:
            raise PushGone(endpoint, status)
        if not 200 <= status < 300:
            raise PushTransient(endpoint, status)
        return DeliveryResult(endpoint, status)
