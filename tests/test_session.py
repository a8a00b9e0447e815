from session import EMPTY_SESSION, SessionStore


def test_session_survives_restart(tmp_path):
    path = tmp_path / "session.sqlite"
    store = SessionStore(path)
    store.save_session("at-1", "rt-1", "u1", "alice", "a@x.com", expiration=1_700_000_000_000)

    reopened = SessionStore(path)
    state = reopened.state
    assert state.access_token == "at-1"
    assert state.refresh_token == "rt-1"
    assert state.user_id == "u1"
    assert state.username == "alice"
    assert state.email == "a@x.com"
    assert state.token_expiration == 1_700_000_000_000
    assert state.is_logged_in
    assert reopened.snapshot() == state


def test_empty_store_reads_back_empty(tmp_path):
    store = SessionStore(tmp_path / "fresh.sqlite")
    assert store.state == EMPTY_SESSION
    assert not store.state.is_logged_in


def test_clear_wipes_every_field(tmp_path):
    path = tmp_path / "session.sqlite"
    store = SessionStore(path)
    store.save_session("at-1", "rt-1", "u1", "alice", "a@x.com")
    store.clear()

    assert store.state == EMPTY_SESSION
    assert SessionStore(path).state == EMPTY_SESSION


def test_subscribers_see_whole_values(tmp_path):
    store = SessionStore(tmp_path / "session.sqlite")
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.save_session("at-1", "rt-1", "u1", "alice", "a@x.com")
    store.save_session("at-2", "rt-2", "u1", "alice", "a@x.com")
    unsubscribe()
    store.clear()

    assert [(s.access_token, s.refresh_token) for s in seen] == [("at-1", "rt-1"), ("at-2", "rt-2")]


def test_failing_subscriber_does_not_block_others(tmp_path):
    store = SessionStore(tmp_path / "session.sqlite")
    seen = []

    def broken(state):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.save_session("at-1", "rt-1", "u1", "alice", "a@x.com")
    assert len(seen) == 1


def test_update_identity_keeps_tokens(tmp_path):
    path = tmp_path / "session.sqlite"
    store = SessionStore(path)
    store.save_session("at-1", "rt-1", "u1", "alice", "a@x.com")
    store.update_identity(email="alice@new.example")

    state = SessionStore(path).state
    assert state.email == "alice@new.example"
    assert state.username == "alice"
    assert state.access_token == "at-1"


def test_saving_without_expiration_drops_stale_value(tmp_path):
    path = tmp_path / "session.sqlite"
    store = SessionStore(path)
    store.save_session("at-1", "rt-1", "u1", "alice", "a@x.com", expiration=123)
    store.save_session("at-2", "rt-2", "u1", "alice", "a@x.com")
    assert SessionStore(path).state.token_expiration is None
