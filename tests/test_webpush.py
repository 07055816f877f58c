"""
Tests for VAPID signing, aes128gcm payload encryption and the push sender.
"""

import io
import json
from http.client import RemoteDisconnected
from unittest.mock import MagicMock
from urllib.error import HTTPError, URLError

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from aurora_sentinel.config import Settings
from aurora_sentinel.errors import ConfigMissing, PushGone, PushTransient
from aurora_sentinel.notify.delivery import Subscription
from aurora_sentinel.notify.webpush import (
    VapidSigner,
    WebPushSender,
    b64url_decode,
    b64url_encode,
    encrypt_payload,
    generate_vapid_keys,
    _public_bytes,
)

from conftest import receiver_keys

ENDPOINT = 'https://fcm.googleapis.com/fcm/send/abc123'


def _derive(salt, ikm, info, length):
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


def decrypt(body: bytes, receiver: ec.EllipticCurvePrivateKey, auth: str) -> bytes:
    """User-agent side of RFC 8291 for a single-record message."""
    salt, rs, idlen = body[:16], int.from_bytes(body[16:20], 'big'), body[20]
    as_public = body[21:21 + idlen]
    ciphertext = body[21 + idlen:]
    assert len(ciphertext) <= rs

    ua_public = _public_bytes(receiver.public_key())
    sender_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), as_public)
    secret = receiver.exchange(ec.ECDH(), sender_key)

    ikm = _derive(b64url_decode(auth), secret, b'WebPush: info\x00' + ua_public + as_public, 32)
    cek = _derive(salt, ikm, b'Content-Encoding: aes128gcm\x00', 16)
    nonce = _derive(salt, ikm, b'Content-Encoding: nonce\x00', 12)
    plaintext = AESGCM(cek).decrypt(nonce, ciphertext, None)
    assert plaintext.endswith(b'\x02')
    return plaintext[:-1]


class TestBase64Url:
    """Unpadded url-safe base64."""

    def test_no_padding(self):
        assert b64url_encode(b'\xfb\xff') == '-_8'

    def test_decode_tolerates_padding_and_std_alphabet(self):
        assert b64url_decode('-_8') == b'\xfb\xff'
        assert b64url_decode('+/8=') == b'\xfb\xff'


class TestEncryption:
    """aes128gcm bodies decrypt back to the payload."""

    def test_round_trip(self):
        p256dh, auth, receiver = receiver_keys()
        payload = json.dumps({'title': 'Aurora forecast 52%', 'tag': 'aurora-50percent'}).encode()
        body = encrypt_payload(payload, p256dh, auth)
        assert decrypt(body, receiver, auth) == payload

    def test_header_layout(self):
        p256dh, auth, _ = receiver_keys()
        salt = bytes(range(16))
        ephemeral = ec.generate_private_key(ec.SECP256R1())
        body = encrypt_payload(b'hi', p256dh, auth, salt=salt, ephemeral_key=ephemeral)

        assert body[:16] == salt
        assert int.from_bytes(body[16:20], 'big') == 4096
        assert body[20] == 65
        assert body[21:86] == _public_bytes(ephemeral.public_key())
        # plaintext + delimiter + 16-byte tag
        assert len(body) == 86 + 2 + 1 + 16

    def test_fresh_salt_each_message(self):
        p256dh, auth, _ = receiver_keys()
        assert encrypt_payload(b'x', p256dh, auth)[:16] != encrypt_payload(b'x', p256dh, auth)[:16]

    def test_payload_too_large(self):
        p256dh, auth, _ = receiver_keys()
        with pytest.raises(ValueError):
            encrypt_payload(b'x' * 4096, p256dh, auth)

    def test_bad_keys(self):
        p256dh, auth, _ = receiver_keys()
        with pytest.raises(ValueError):
            encrypt_payload(b'x', b64url_encode(b'\x04' * 10), auth)
        with pytest.raises(ValueError):
            encrypt_payload(b'x', p256dh, b64url_encode(b'short'))


class TestVapid:
    """ES256 JWT with raw r||s signature."""

    @pytest.fixture
    def signer(self):
        private, _ = generate_vapid_keys()
        return VapidSigner(private, 'mailto:ops@example.com', clock=lambda: 1_768_132_800)

    def test_key_formats(self):
        private, public = generate_vapid_keys()
        assert len(b64url_decode(private)) == 32
        raw_public = b64url_decode(public)
        assert len(raw_public) == 65 and raw_public[0] == 0x04
        assert VapidSigner(private, 'mailto:x@example.com').public_key == public

    def test_claims(self, signer):
        header, claims, _ = signer.sign(ENDPOINT).split('.')
        assert json.loads(b64url_decode(header)) == {'typ': 'JWT', 'alg': 'ES256'}
        assert json.loads(b64url_decode(claims)) == {
            'aud': 'https://fcm.googleapis.com',
            'exp': 1_768_132_800 + 12 * 3600,
            'sub': 'mailto:ops@example.com',
        }

    def test_signature_verifies(self, signer):
        header, claims, signature = signer.sign(ENDPOINT).split('.')
        raw = b64url_decode(signature)
        assert len(raw) == 64
        der = encode_dss_signature(int.from_bytes(raw[:32], 'big'), int.from_bytes(raw[32:], 'big'))
        public = ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256R1(), b64url_decode(signer.public_key))
        public.verify(der, f"{header}.{claims}".encode(), ec.ECDSA(hashes.SHA256()))

    def test_authorization_header(self, signer):
        value = signer.authorization(ENDPOINT)
        assert value.startswith('vapid t=')
        assert value.endswith(f", k={signer.public_key}")

    def test_bad_private_key(self):
        with pytest.raises(ValueError):
            VapidSigner(b64url_encode(b'\x01' * 16), 'mailto:x@example.com')

    def test_from_settings_requires_keys(self):
        with pytest.raises(ConfigMissing):
            VapidSigner.from_settings(Settings())

    def test_from_settings(self):
        private, public = generate_vapid_keys()
        signer = VapidSigner.from_settings(Settings(vapid_private_key=private, vapid_public_key=public))
        assert signer.public_key == public


class TestSender:
    """HTTP status mapping: 404/410 gone, anything else non-2xx transient."""

    @pytest.fixture
    def subscription(self):
        p256dh, auth, _ = receiver_keys()
        return Subscription(ENDPOINT, p256dh, auth)

    def _sender(self, opener):
        private, _ = generate_vapid_keys()
        return WebPushSender(VapidSigner(private, 'mailto:x@example.com'), ttl=600, opener=opener)

    def _ok_opener(self, status=201):
        response = MagicMock()
        response.status = status
        opener = MagicMock()
        opener.return_value.__enter__.return_value = response
        return opener

    def test_success(self, subscription):
        opener = self._ok_opener()
        result = self._sender(opener).send(subscription, {'title': 't'})
        assert result.ok and result.status == 201

        request = opener.call_args[0][0]
        assert request.get_method() == 'POST'
        assert request.full_url == ENDPOINT
        assert request.get_header('Content-encoding') == 'aes128gcm'
        assert request.get_header('Ttl') == '600'
        assert request.get_header('Authorization').startswith('vapid t=')

    def test_body_decrypts(self):
        p256dh, auth, receiver = receiver_keys()
        opener = self._ok_opener()
        self._sender(opener).send(Subscription(ENDPOINT, p256dh, auth), {'title': 't'})
        body = opener.call_args[0][0].data
        assert json.loads(decrypt(body, receiver, auth)) == {'title': 't'}

    @pytest.mark.parametrize("code", [404, 410])
    def test_gone(self, subscription, code):
        opener = MagicMock(side_effect=HTTPError(ENDPOINT, code, 'Gone', None, io.BytesIO(b'expired')))
        with pytest.raises(PushGone) as exc:
            self._sender(opener).send(subscription, {})
        assert exc.value.status == code
        assert exc.value.body == 'expired'

    @pytest.mark.parametrize("code", [400, 413, 429, 500, 503])
    def test_transient(self, subscription, code):
        opener = MagicMock(side_effect=HTTPError(ENDPOINT, code, 'Err', None, io.BytesIO(b'')))
        with pytest.raises(PushTransient):
            self._sender(opener).send(subscription, {})

    def test_network_error(self, subscription):
        opener = MagicMock(side_effect=URLError('connection refused'))
        with pytest.raises(PushTransient) as exc:
            self._sender(opener).send(subscription, {})
        assert exc.value.status == 0

    @pytest.mark.parametrize("error", [
        ConnectionResetError('reset'),
        RemoteDisconnected('closed'),
        TimeoutError('timed out'),
    ])
    def test_dropped_connection(self, subscription, error):
        opener = MagicMock(side_effect=error)
        with pytest.raises(PushTransient) as exc:
            self._sender(opener).send(subscription, {})
        assert exc.value.status == 0
