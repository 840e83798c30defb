import hashlib
import hmac

import pytest

from crib_hunter.catalog.key_derivation import (
    NO_KEY,
    build_key_derivations,
    get_key_derivation,
)

KEY = b"deadbeef"
CONTEXT = {"key": "deadbeef", "sessionId": "abc123", "ts": 1700000000}


def by_name(catalog):
    return {kd.name: kd for kd in catalog}


class TestKeyDerivationCatalog:
    """Test suite for the key derivation registry"""

    def test_names_are_unique(self):
        """Test no two entries share a name"""
        names = [kd.name for kd in build_key_derivations(["sessionId", "ts"])]
        assert len(names) == len(set(names))

    def test_expected_entries(self):
        """Test the catalog covers each derivation family"""
        names = by_name(build_key_derivations(["sessionId"]))
        for name in (
            "identity",
            "hex-decode",
            "sha256(key)",
            "sha256(key)[:16]",
            "md5(key)",
            "sha256(key+sessionId)",
            "md5(sessionId+key)",
            "hmac-sha256(key, sessionId)",
            "sha256(key)^sha256(sessionId)",
            "hkdf-sha256(key, salt=empty, len=32)",
            "pbkdf2-sha256(key, salt=sessionId, n=1000, len=16)",
        ):
            assert name in names

    def test_key_is_not_a_field(self):
        """Test declaring 'key' as a field does not duplicate entries"""
        with_key = [kd.name for kd in build_key_derivations(["key", "sessionId"])]
        without_key = [kd.name for kd in build_key_derivations(["sessionId"])]
        assert with_key == without_key

    def test_declared_output_lengths(self):
        """Test every declared output length matches what the entry produces"""
        for kd in build_key_derivations(["sessionId", "ts"]):
            out = kd(KEY, CONTEXT)
            if kd.output_length is not None:
                assert len(out) == kd.output_length, kd.name

    def test_concatenation_order(self):
        """Test key+field and field+key are distinct and correct"""
        catalog = by_name(build_key_derivations(["sessionId"]))
        assert catalog["sha256(key+sessionId)"](KEY, CONTEXT) == hashlib.sha256(b"deadbeefabc123").digest()
        assert catalog["sha256(sessionId+key)"](KEY, CONTEXT) == hashlib.sha256(b"abc123deadbeef").digest()
        assert catalog["md5(key+sessionId)"](KEY, CONTEXT) == hashlib.md5(b"deadbeefabc123").digest()

    def test_integer_fields(self):
        """Test integer context values are hashed as their decimal text"""
        catalog = by_name(build_key_derivations(["ts"]))
        assert catalog["sha256(ts)"](KEY, CONTEXT) == hashlib.sha256(b"1700000000").digest()

    def test_hmac(self):
        """Test HMAC entries agree with the standard library"""
        catalog = by_name(build_key_derivations(["sessionId"]))
        expected = hmac.new(KEY, b"abc123", hashlib.sha256).digest()
        assert catalog["hmac-sha256(key, sessionId)"](KEY, CONTEXT) == expected

    def test_pbkdf2(self):
        """Test PBKDF2 entries agree with the standard library"""
        catalog = by_name(build_key_derivations(["sessionId"]))
        kd = catalog["pbkdf2-sha256(key, salt=sessionId, n=100, len=16)"]
        assert kd(KEY, CONTEXT) == hashlib.pbkdf2_hmac("sha256", KEY, b"abc123", 100, 16)

    def test_xor_of_hashes(self):
        """Test the hash XOR entry"""
        catalog = by_name(build_key_derivations(["sessionId"]))
        a = hashlib.sha256(KEY).digest()
        b = hashlib.sha256(b"abc123").digest()
        assert catalog["sha256(key)^sha256(sessionId)"](KEY, CONTEXT) == bytes(x ^ y for x, y in zip(a, b))

    def test_hex_decode(self):
        """Test hex-decode accepts hex keys and rejects others"""
        kd = get_key_derivation("hex-decode", [])
        assert kd(KEY, {}) == b"\xde\xad\xbe\xef"
        with pytest.raises(ValueError):
            kd(b"not hex", {})
        with pytest.raises(ValueError):
            kd(b"de ad be ef", {})

    def test_missing_field(self):
        """Test a missing context field raises KeyError"""
        kd = get_key_derivation("sha256(sessionId)", ["sessionId"])
        with pytest.raises(KeyError):
            kd(KEY, {"key": "deadbeef"})


class TestGetKeyDerivation:
    """Test suite for lookup by name"""

    def test_none(self):
        """Test the keyless derivation"""
        assert get_key_derivation("none", []) is NO_KEY
        assert NO_KEY(KEY, CONTEXT) == b""

    def test_unknown(self):
        """Test unknown names raise KeyError"""
        with pytest.raises(KeyError, match="Unknown key derivation"):
            get_key_derivation("sha512(key)", [])
