import base64

import pytest

from ticketgate import codec
from ticketgate.errors import SigningKeyError

KEY = "k3y"
PID = "5b0c4a8e-1f3e-4c55-9b4a-1a2b3c4d5e6f"


def _flip_bit(s: str, index: int = 0) -> str:
    raw = bytearray(s.encode())
    raw[index] ^= 0x01
    return raw.decode()


def test_sign_is_deterministic_base64_sha256():
    mac = codec.sign(PID, KEY)
    assert mac == codec.sign(PID, KEY)
    assert len(base64.b64decode(mac)) == 32


def test_verify_accepts_own_mac():
    assert codec.verify(PID, codec.sign(PID, KEY), KEY)


def test_verify_rejects_other_key():
    assert not codec.verify(PID, codec.sign(PID, KEY), "other")


def test_verify_rejects_flipped_mac_bit():
    mac = codec.sign(PID, KEY)
    assert not codec.verify(PID, _flip_bit(mac, 2), KEY)


def test_verify_rejects_flipped_id_bit():
    mac = codec.sign(PID, KEY)
    assert not codec.verify(_flip_bit(PID, 0), mac, KEY)


def test_verify_with_empty_key_is_false():
    assert codec.verify(PID, codec.sign(PID, KEY), "") is False


def test_sign_with_empty_key_raises():
    with pytest.raises(SigningKeyError):
        codec.sign(PID, "")


def test_token_value_shape():
    value = codec.token_value(PID, KEY)
    pid, mac = value.split(":")
    assert pid == PID
    assert mac == codec.sign(PID, KEY)


@pytest.mark.parametrize("value", [
    None, "", "no-separator", ":mac", "id:", "a:b:c", "   ",
    "\ud800:abc", "na\u00efve:mac", "id\x00:mac", "id:m\nac",
])
def test_split_token_rejects_malformed(value):
    assert codec.split_token(value) is None


def test_split_token_strips_whitespace():
    assert codec.split_token("  abc:def \n") == ("abc", "def")
