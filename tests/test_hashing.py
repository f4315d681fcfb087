"""hashing のユニットテスト"""

import hashlib
import hmac

from k1s0_featureflag.hashing import get_bucket, hash_member


def test_hash_member_is_hmac_sha256_hex() -> None:
    expected = hmac.new(b"salt", b"user-1", hashlib.sha256).hexdigest()
    assert hash_member("salt", "user-1") == expected


def test_hash_member_depends_on_salt() -> None:
    assert hash_member("a", "user-1") != hash_member("b", "user-1")


def test_hash_member_stringifies_value() -> None:
    assert hash_member("s", 42) == hash_member("s", "42")


def test_hash_member_normalizes_json_scalars() -> None:
    """真偽値と整数値の float は JSON と同じ表記でハッシュされること。"""
    assert hash_member("s", True) == hash_member("s", "true")
    assert hash_member("s", False) == hash_member("s", "false")
    assert hash_member("s", 1.0) == hash_member("s", "1")
    assert hash_member("s", 1.5) == hash_member("s", "1.5")


def test_get_bucket_is_deterministic() -> None:
    """同じキーは常に同じバケット。"""
    assert get_bucket("user-1:flag") == get_bucket("user-1:flag")


def test_get_bucket_range() -> None:
    """バケットは [0, 100) に収まること。"""
    for i in range(500):
        bucket = get_bucket(f"user-{i}:flag")
        assert 0 <= bucket < 100


def test_get_bucket_matches_formula() -> None:
    digest = hashlib.sha256(b"user-7:checkout").digest()
    expected = (int.from_bytes(digest[:4], "big") % 10000) / 100
    assert get_bucket("user-7:checkout") == expected


def test_get_bucket_spreads_keys() -> None:
    """多数のキーがおおむね均等に分布すること。"""
    below_half = sum(1 for i in range(2000) if get_bucket(f"u{i}:f") < 50)
    assert 800 < below_half < 1200
