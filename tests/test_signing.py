"""Tests for HMAC webhook signatures."""

import sys

sys.path.insert(0, "src")

from automation_engine.webhooks.signing import sign, signature_header, verify_signature

BODY = '{"id":"evt-1","type":"note.created"}'
TIMESTAMP = "1700000000"
SECRET = "s3cret-value"


def _flip(value: str, index: int) -> str:
    return value[:index] + chr(ord(value[index]) ^ 1) + value[index + 1 :]


class TestSignature:
    def test_header_format(self):
        header = signature_header(BODY, TIMESTAMP, SECRET)
        assert header.startswith("sha256=")
        assert len(header) == len("sha256=") + 64

    def test_round_trip(self):
        assert verify_signature(BODY, TIMESTAMP, "sha256=" + sign(BODY, TIMESTAMP, SECRET), SECRET)

    def test_bytes_and_str_bodies_agree(self):
        assert sign(BODY.encode(), TIMESTAMP, SECRET) == sign(BODY, TIMESTAMP, SECRET)
        assert sign(BODY, int(TIMESTAMP), SECRET) == sign(BODY, TIMESTAMP, SECRET)

    def test_any_flipped_body_byte_fails(self):
        header = signature_header(BODY, TIMESTAMP, SECRET)
        for i in range(len(BODY)):
            assert not verify_signature(_flip(BODY, i), TIMESTAMP, header, SECRET)

    def test_any_flipped_timestamp_byte_fails(self):
        header = signature_header(BODY, TIMESTAMP, SECRET)
        for i in range(len(TIMESTAMP)):
            assert not verify_signature(BODY, _flip(TIMESTAMP, i), header, SECRET)

    def test_any_flipped_secret_byte_fails(self):
        header = signature_header(BODY, TIMESTAMP, SECRET)
        for i in range(len(SECRET)):
            assert not verify_signature(BODY, TIMESTAMP, header, _flip(SECRET, i))

    def test_missing_prefix_or_inputs(self):
        digest = sign(BODY, TIMESTAMP, SECRET)
        assert not verify_signature(BODY, TIMESTAMP, digest, SECRET)
        assert not verify_signature(BODY, TIMESTAMP, None, SECRET)
        assert not verify_signature(BODY, TIMESTAMP, "sha256=" + digest, None)
