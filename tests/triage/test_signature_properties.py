"""Property-based tests for webhook signature verification.

Verifies that a digest computed with the shared secret validates, that
any single-bit change to the body or signature fails validation, and
that malformed or differently sized signatures never raise.
"""

from hypothesis import assume, given, settings, strategies as st

from src.triage.webhook.signature import compute_signature, verify_signature


secrets = st.text(min_size=1, max_size=64)
bodies = st.binary(min_size=0, max_size=2048)


def _flip_bit(data: bytes, bit: int) -> bytes:
    index, offset = divmod(bit, 8)
    mutated = bytearray(data)
    mutated[index] ^= 1 << offset
    return bytes(mutated)


@settings(max_examples=100)
@given(body=bodies, secret=secrets)
def test_signature_with_same_secret_validates(body: bytes, secret: str):
    signature = compute_signature(body, secret)

    assert signature.startswith("sha256=")
    assert verify_signature(body, signature, secret)


@settings(max_examples=100)
@given(body=st.binary(min_size=1, max_size=512), secret=secrets, data=st.data())
def test_single_bit_body_mutation_fails(body: bytes, secret: str, data):
    signature = compute_signature(body, secret)
    bit = data.draw(st.integers(min_value=0, max_value=len(body) * 8 - 1))

    assert not verify_signature(_flip_bit(body, bit), signature, secret)


@settings(max_examples=100)
@given(body=bodies, secret=secrets, data=st.data())
def test_single_bit_signature_mutation_fails(body: bytes, secret: str, data):
    signature = compute_signature(body, secret).encode("ascii")
    bit = data.draw(st.integers(min_value=0, max_value=len(signature) * 8 - 1))
    mutated = _flip_bit(signature, bit).decode("latin-1")

    assert not verify_signature(body, mutated, secret)


@settings(max_examples=100)
@given(body=bodies, secret=secrets, other=secrets)
def test_signature_with_other_secret_fails(body: bytes, secret: str, other: str):
    assume(secret != other)
    signature = compute_signature(body, other)

    assert not verify_signature(body, signature, secret)


@settings(max_examples=100)
@given(body=bodies, secret=secrets, garbage=st.text(max_size=200))
def test_unequal_length_signatures_never_raise_or_validate(
    body: bytes, secret: str, garbage: str
):
    expected = compute_signature(body, secret)
    assume(len(garbage) != len(expected))

    assert verify_signature(body, garbage, secret) is False


def test_missing_signature_is_rejected():
    assert verify_signature(b"{}", None, "secret") is False
    assert verify_signature(b"{}", "", "secret") is False


def test_known_digest():
    # Example from GitHub's webhook validation documentation
    signature = compute_signature(b"Hello, World!", "It's a Secret to Everybody")

    assert signature == (
        "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"
    )
