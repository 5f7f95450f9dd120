from __future__ import annotations

import hmac
import time

import pytest

from planner_core.core.errors import WebhookSignatureError
from planner_core.webhooks import signature as signature_module
from planner_core.webhooks.signature import compute_signature, require_valid_signature, verify_signature

SECRET = "shared-secret"
BODY = b'{"jobId": 12, "status": "completed"}'


def test_valid_signature_is_accepted() -> None:
    assert verify_signature(BODY, compute_signature(SECRET, BODY), SECRET)


def test_signature_is_computed_over_raw_bytes() -> None:
    reordered = b'{"status": "completed", "jobId": 12}'
    assert not verify_signature(reordered, compute_signature(SECRET, BODY), SECRET)


def test_uppercase_hex_is_accepted() -> None:
    assert verify_signature(BODY, compute_signature(SECRET, BODY).upper(), SECRET)


@pytest.mark.parametrize(
    "signature",
    ["", "not-hex", "abcd", compute_signature("other-secret", BODY)],
)
def test_bad_signatures_are_rejected(signature: str) -> None:
    assert not verify_signature(BODY, signature, SECRET)


def test_missing_secret_rejects_everything() -> None:
    assert not verify_signature(BODY, compute_signature(SECRET, BODY), None)


def test_require_valid_signature_codes() -> None:
    with pytest.raises(WebhookSignatureError) as missing:
        require_valid_signature(BODY, None, SECRET)
    assert missing.value.code == "MISSING_SIGNATURE"
    assert missing.value.status_code == 401

    tampered = BODY.replace(b"12", b"13")
    with pytest.raises(WebhookSignatureError) as invalid:
        require_valid_signature(tampered, compute_signature(SECRET, BODY), SECRET)
    assert invalid.value.code == "INVALID_SIGNATURE"
    assert "expected" not in invalid.value.message.lower()


def test_comparison_goes_through_compare_digest(monkeypatch) -> None:
    calls = []
    original = hmac.compare_digest

    def recording_compare(left, right):
        calls.append((left, right))
        return original(left, right)

    monkeypatch.setattr(signature_module.hmac, "compare_digest", recording_compare)
    body = b'{"jobId": 1}'

    assert verify_signature(body, compute_signature(SECRET, body), SECRET)
    assert not verify_signature(body, "0" * 64, SECRET)
    assert len(calls) == 2


def _best_time(body: bytes, signature: str, rounds: int = 5, iterations: int = 2000) -> float:
    best = float("inf")
    for _ in range(rounds):
        started = time.perf_counter()
        for _ in range(iterations):
            verify_signature(body, signature, SECRET)
        best = min(best, time.perf_counter() - started)
    return best


def test_verification_time_does_not_depend_on_mismatch_position() -> None:
    body = b'{"jobId": 1, "status": "completed"}'
    good = compute_signature(SECRET, body)
    first_byte_off = format(int(good[:2], 16) ^ 0xFF, "02x") + good[2:]
    last_byte_off = good[:-2] + format(int(good[-2:], 16) ^ 0xFF, "02x")

    timings = [_best_time(body, candidate) for candidate in (good, first_byte_off, last_byte_off)]

    assert max(timings) / min(timings) < 3.0
