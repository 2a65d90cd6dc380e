import hashlib
from datetime import timedelta

from projectdesk.service.one_time_tokens import OneTimeTokenGenerator, hash_token
from projectdesk.service.passwords import hash_password


class TestGenerate:
    def test_raw_token_is_random_hex(self, clock):
        generator = OneTimeTokenGenerator(clock=clock)
        first = generator.generate(timedelta(minutes=20))
        second = generator.generate(timedelta(minutes=20))
        assert len(first.raw) == 64
        int(first.raw, 16)
        assert first.raw != second.raw

    def test_only_the_hash_is_meant_for_storage(self, clock):
        token = OneTimeTokenGenerator(clock=clock).generate(timedelta(minutes=60))
        assert token.hashed == hashlib.sha256(token.raw.encode()).hexdigest()
        assert token.hashed == hash_token(token.raw)
        assert token.hashed != token.raw
        assert token.expires_at == clock.now + timedelta(minutes=60)


class TestConsume:
    def test_matching_token_before_expiry(self, clock):
        generator = OneTimeTokenGenerator(clock=clock)
        token = generator.generate(timedelta(minutes=20))
        assert generator.consume(token.raw, token.hashed, token.expires_at)

    def test_expired_token(self, clock):
        generator = OneTimeTokenGenerator(clock=clock)
        token = generator.generate(timedelta(minutes=20))
        clock.advance(minutes=20)
        assert not generator.consume(token.raw, token.hashed, token.expires_at)

    def test_wrong_or_missing_token(self, clock):
        generator = OneTimeTokenGenerator(clock=clock)
        token = generator.generate(timedelta(minutes=20))
        assert not generator.consume("f" * 64, token.hashed, token.expires_at)
        assert not generator.consume("", token.hashed, token.expires_at)
        assert not generator.consume(token.raw, None, token.expires_at)
        assert not generator.consume(token.raw, token.hashed, None)


class TestSingleUse:
    def test_reset_token_completes_once(self, memory_store, clock):
        user = memory_store.create_user("a@x.com", "alice", hash_password("Aa1!aaaa"))
        token = OneTimeTokenGenerator(clock=clock).generate(timedelta(minutes=60))
        memory_store.set_password_reset_token(user.id, token.hashed, token.expires_at)

        first = memory_store.complete_password_reset(hash_token(token.raw), "new-hash", clock.now)
        second = memory_store.complete_password_reset(hash_token(token.raw), "other-hash", clock.now)

        assert first is not None and first.id == user.id
        assert second is None
        assert memory_store.get_user(user.id).password_hash == "new-hash"

    def test_verification_token_completes_once(self, memory_store, clock):
        user = memory_store.create_user("a@x.com", "alice", "hash")
        token = OneTimeTokenGenerator(clock=clock).generate(timedelta(minutes=20))
        memory_store.set_email_verification_token(user.id, token.hashed, token.expires_at, clock.now)

        assert memory_store.complete_email_verification(token.hashed, clock.now) is not None
        assert memory_store.complete_email_verification(token.hashed, clock.now) is None
        assert memory_store.get_user(user.id).is_email_verified

    def test_expired_reset_token_is_refused(self, memory_store, clock):
        user = memory_store.create_user("a@x.com", "alice", "hash")
        token = OneTimeTokenGenerator(clock=clock).generate(timedelta(minutes=60))
        memory_store.set_password_reset_token(user.id, token.hashed, token.expires_at)
        clock.advance(minutes=60)
        assert memory_store.complete_password_reset(token.hashed, "new-hash", clock.now) is None
        assert memory_store.get_user(user.id).password_hash == "hash"
