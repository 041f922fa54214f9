import hashlib
import hmac

from minisend.core.signatures import compute_signature, verify_signature

SECRET = "webhook-secret"
PAYLOAD = b'{"event":"order.settled","data":{"id":"ord-1"}}'


def test_compute_signature_matches_hmac_sha256():
    expected = hmac.new(SECRET.encode(), PAYLOAD, hashlib.sha256).hexdigest()
    assert compute_signature(PAYLOAD, SECRET) == expected


def test_verify_accepts_own_signature():
    assert verify_signature(PAYLOAD, compute_signature(PAYLOAD, SECRET), SECRET)


def test_verify_accepts_prefixed_and_uppercase_signature():
    signature = compute_signature(PAYLOAD, SECRET)
    assert verify_signature(PAYLOAD, f"sha256={signature}", SECRET)
    assert verify_signature(PAYLOAD, signature.upper(), SECRET)


def test_verify_accepts_str_payload():
    body = PAYLOAD.decode()
    assert verify_signature(body, compute_signature(PAYLOAD, SECRET), SECRET)


def test_single_byte_payload_mutation_is_rejected():
    signature = compute_signature(PAYLOAD, SECRET)
    for index in range(len(PAYLOAD)):
        mutated = bytearray(PAYLOAD)
        mutated[index] ^= 0x01
        assert not verify_signature(bytes(mutated), signature, SECRET)


def test_single_character_signature_mutation_is_rejected():
    signature = compute_signature(PAYLOAD, SECRET)
    for index in range(len(signature)):
        replacement = "0" if signature[index] != "0" else "1"
        mutated = signature[:index] + replacement + signature[index + 1:]
        assert not verify_signature(PAYLOAD, mutated, SECRET)


def test_wrong_secret_is_rejected():
    assert not verify_signature(PAYLOAD, compute_signature(PAYLOAD, SECRET), "other-secret")


def test_missing_signature_or_secret_returns_false():
    signature = compute_signature(PAYLOAD, SECRET)
    assert verify_signature(PAYLOAD, None, SECRET) is False
    assert verify_signature(PAYLOAD, "", SECRET) is False
    assert verify_signature(PAYLOAD, signature, None) is False
    assert verify_signature(PAYLOAD, signature, "") is False


def test_non_hex_signature_is_rejected_without_raising():
    assert verify_signature(PAYLOAD, "not-a-signature", SECRET) is False
