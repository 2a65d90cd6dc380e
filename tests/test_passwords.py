import pytest

from projectdesk.service.passwords import hash_password, verify_password


class TestPasswordHashing:
    @pytest.mark.parametrize("plaintext", ["Aa1!aaaa", "correct horse battery staple", "ünïcødé-Pässwörd1!"])
    def test_round_trip(self, plaintext):
        assert verify_password(plaintext, hash_password(plaintext))

    def test_other_password_does_not_verify(self):
        digest = hash_password("Aa1!aaaa")
        assert not verify_password("Aa1!aaab", digest)

    def test_uses_argon2id_with_fresh_salt(self):
        first = hash_password("Aa1!aaaa")
        second = hash_password("Aa1!aaaa")
        assert first.startswith("$argon2id$")
        assert first != second
        assert verify_password("Aa1!aaaa", first)
        assert verify_password("Aa1!aaaa", second)

    def test_empty_plaintext_is_rejected(self):
        with pytest.raises(ValueError):
            hash_password("")


class TestVerifyFailsClosed:
    @pytest.mark.parametrize(
        "plaintext,digest",
        [
            (None, "$argon2id$v=19$m=65536,t=3,p=4$abc$def"),
            ("Aa1!aaaa", None),
            ("", "anything"),
            ("Aa1!aaaa", ""),
            ("Aa1!aaaa", "not-a-hash"),
            ("Aa1!aaaa", "$argon2id$v=19$garbage"),
        ],
    )
    def test_missing_or_malformed_input_returns_false(self, plaintext, digest):
        assert verify_password(plaintext, digest) is False
