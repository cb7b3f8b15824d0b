from userdir.models import SessionUser
from userdir.session import DEFAULT_TTL_SECONDS, SESSION_KEY, MemoryStorage, SessionStore


ALICE = SessionUser(account="alice", display_name="Alice", role="user")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _store(clock=None):
    storage = MemoryStorage()
    return storage, SessionStore(storage, clock=clock or FakeClock())


def test_session_just_past_24h_is_rejected_and_removed():
    clock = FakeClock()
    storage, sessions = _store(clock)
    sessions.create_session(ALICE)
    clock.now += DEFAULT_TTL_SECONDS + 0.001

    status = sessions.check_auth()

    assert status.is_logged_in is False
    assert status.user is None
    assert SESSION_KEY not in storage.items


def test_session_just_under_24h_is_accepted():
    clock = FakeClock()
    _, sessions = _store(clock)
    sessions.create_session(ALICE)
    clock.now += 23 * 3600 + 59 * 60

    status = sessions.check_auth()

    assert status.is_logged_in is True
    assert status.user == ALICE


def test_expired_session_is_not_removed_until_checked():
    clock = FakeClock()
    storage, sessions = _store(clock)
    sessions.create_session(ALICE)
    clock.now += DEFAULT_TTL_SECONDS * 2

    assert sessions.read_session() is not None
    assert SESSION_KEY in storage.items
    sessions.check_auth()
    assert SESSION_KEY not in storage.items


def test_malformed_session_reads_as_absent():
    storage, sessions = _store()
    storage.set_item(SESSION_KEY, "{not json")

    assert sessions.read_session() is None
    assert sessions.check_auth().is_logged_in is False
    assert SESSION_KEY not in storage.items


def test_create_session_overwrites_previous_and_keeps_no_password():
    storage, sessions = _store()
    sessions.create_session(ALICE)
    bob = SessionUser(account="bob", display_name="Bob", role="admin")
    sessions.create_session(bob)

    assert sessions.current_user() == bob
    assert sessions.is_admin() is True
    assert "password" not in storage.items[SESSION_KEY]


def test_destroy_session_is_idempotent_and_survives_storage_failure():
    class BrokenStorage(MemoryStorage):
        def remove_item(self, key):
            raise OSError("storage unavailable")

    _, sessions = _store()
    sessions.destroy_session()
    sessions.destroy_session()

    broken = SessionStore(BrokenStorage())
    broken.destroy_session()
