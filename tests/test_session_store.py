import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kyc_backend.db import Base
from kyc_backend.models import User
from kyc_backend.session_store import DbSessionStore, InMemorySessionStore, SessionRecord, new_session
from kyc_backend.utils import utcnow

T0 = datetime(2026, 1, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def record(sid, user_id="u1", minutes=30):
    return SessionRecord(id=sid, user_id=user_id, context={"role": "admin"}, created_at=T0, expires_at=T0 + timedelta(minutes=minutes))


class TestInMemorySessionStore(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(T0)
        self.store = InMemorySessionStore(clock=self.clock)

    def test_put_get_delete(self):
        self.store.put(record("a"))
        self.assertEqual(self.store.get("a").user_id, "u1")
        self.store.delete("a")
        self.assertIsNone(self.store.get("a"))
        # repetido não falha
        self.store.delete("a")

    def test_lazy_expiry_on_get(self):
        self.store.put(record("a", minutes=10))
        self.clock.now = T0 + timedelta(minutes=10)
        self.assertIsNone(self.store.get("a"))
        self.assertEqual(len(self.store), 0)

    def test_expire_sweeps_only_dead_sessions(self):
        self.store.put(record("short", minutes=5))
        self.store.put(record("long", minutes=60))
        self.clock.now = T0 + timedelta(minutes=30)
        self.assertEqual(self.store.expire(), 1)
        self.assertEqual(len(self.store), 1)
        self.assertIsNotNone(self.store.get("long"))

    def test_new_session(self):
        rec = new_session("u1", {"role": "agent"}, ttl_hours=2)
        self.assertEqual(rec.expires_at - rec.created_at, timedelta(hours=2))
        self.assertNotEqual(rec.id, new_session("u1", {}, 2).id)


class TestDbSessionStore(unittest.TestCase):
    def setUp(self):
        engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        self.db = sessionmaker(bind=engine)()
        self.db.add(User(id="u1", username="alice", password_hash="x", role="admin", permissions={}))
        self.db.commit()
        self.clock = FakeClock(T0)
        self.store = DbSessionStore(self.db, clock=self.clock)

    def tearDown(self):
        self.db.close()

    def test_roundtrip_and_lazy_expiry(self):
        self.store.put(record("a", minutes=10))
        rec = self.store.get("a")
        self.assertEqual(rec.user_id, "u1")
        self.assertEqual(rec.context, {"role": "admin"})

        self.clock.now = T0 + timedelta(minutes=11)
        self.assertIsNone(self.store.get("a"))

    def test_expire(self):
        self.store.put(record("a", minutes=5))
        self.store.put(record("b", minutes=50))
        self.assertEqual(self.store.expire(T0 + timedelta(minutes=20)), 1)
        self.assertIsNotNone(self.store.get("b"))


class TestUtcNow(unittest.TestCase):
    def test_naive_utc(self):
        now = utcnow()
        self.assertIsNone(now.tzinfo)
        reference = datetime.now(timezone.utc).replace(tzinfo=None)
        self.assertLess(abs(reference - now), timedelta(seconds=5))

    def test_default_clock_session_survives_db_roundtrip(self):
        engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        db = sessionmaker(bind=engine)()
        try:
            db.add(User(id="u1", username="alice", password_hash="x", role="admin", permissions={}))
            db.commit()
            store = DbSessionStore(db)
            rec = new_session("u1", {"role": "admin"}, ttl_hours=1)
            self.assertIsNone(rec.created_at.tzinfo)
            store.put(rec)
            self.assertEqual(store.get(rec.id).user_id, "u1")
        finally:
            db.close()


if __name__ == "__main__":
    unittest.main()
