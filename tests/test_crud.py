import random

import pytest
from sqlmodel import SQLModel, create_engine, Session

from hangman import crud, models, security
from hangman.errors import ConflictError, DependencyError, InvalidStateError, NotFoundError, ValidationError
from hangman.game import GameSession
from hangman.init_db import seed_words

SECRET = "test-secret"


def setup_db(tmp_path):
    db = tmp_path / 'crud.db'
    engine = create_engine(f'sqlite:///{db}', connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    return engine


def make_user(s, name="alice"):
    return crud.create_user(s, name, f"{name}@Example.com", "GoodPass1")


def test_create_user_and_authenticate(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        assert u.id is not None
        assert u.email == "alice@example.com"
        assert u.password_hash != "GoodPass1"

        assert crud.authenticate_user(s, "ALICE@example.com", "GoodPass1").id == u.id
        assert crud.authenticate_user(s, "alice@example.com", "wrong-pass1") is None
        assert crud.authenticate_user(s, "nobody@example.com", "GoodPass1") is None


def test_duplicate_user_conflicts(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        make_user(s)
        with pytest.raises(ConflictError):
            crud.create_user(s, "other", "alice@example.com", "GoodPass1")
        with pytest.raises(ConflictError):
            crud.create_user(s, "alice", "new@example.com", "GoodPass1")


def test_refresh_token_lifecycle(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        token = crud.issue_refresh_token(s, u, SECRET, ttl_days=7)
        assert crud.verify_refresh_token(s, token, SECRET).id == u.id
        assert crud.verify_refresh_token(s, token, "other-secret") is None

        # issuing again replaces the stored token
        newer = crud.issue_refresh_token(s, u, SECRET, ttl_days=7)
        assert newer != token
        assert crud.verify_refresh_token(s, token, SECRET) is None

        assert crud.revoke_refresh_token(s, newer) is True
        assert crud.verify_refresh_token(s, newer, SECRET) is None
        assert crud.revoke_refresh_token(s, newer) is False
        assert crud.revoke_refresh_token(s, None) is False


def test_access_token_is_not_a_refresh_token(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        access = security.create_access_token(SECRET, u.id, 15)
        assert crud.verify_refresh_token(s, access, SECRET) is None


def test_random_word_requires_corpus(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        with pytest.raises(DependencyError):
            crud.get_random_word(s)

    added = seed_words(engine, [
        {'word': "CAT", 'hint1': "pet", 'hint2': "purrs"},
        {'word': "DOG", 'hint1': "pet", 'hint2': "barks"},
    ])
    assert added == 2
    assert seed_words(engine, [{'word': "CAT", 'hint1': "pet", 'hint2': "purrs"}]) == 0

    with Session(engine) as s:
        assert crud.count_words(s) == 2
        picked = {crud.get_random_word(s, random.Random(seed))['word'] for seed in range(20)}
        assert picked == {"CAT", "DOG"}
        entry = crud.get_random_word(s)
        assert set(entry) == {'word', 'hint1', 'hint2'}


def test_create_and_load_game(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        gs = GameSession.start(u.id, "CAT", ["pet", "purrs"])
        crud.create_game(s, gs)
        active = crud.get_active_game(s, u.id)
        assert active is not None and active.id == gs.id
        assert crud.get_game(s, gs.id).word == "CAT"
        assert crud.get_game(s, "missing") is None


def test_second_active_game_hits_unique_index(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        first = GameSession.start(u.id, "CAT", ["pet", "purrs"])
        crud.create_game(s, first)

        # a racing request that skipped the active-game check
        second = GameSession.start(u.id, "DOG", ["pet", "barks"])
        with pytest.raises(ConflictError) as exc:
            crud.create_game(s, second)
        assert exc.value.game_id == first.id
        assert crud.get_game(s, second.id) is None

        # once finished, a new game may start
        first.surrender()
        crud.save_game_session(s, first)
        crud.create_game(s, GameSession.start(u.id, "DOG", ["pet", "barks"]))


def test_save_game_session_persists_and_bumps_version(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        gs = GameSession.start(u.id, "CAT", ["pet", "purrs"])
        crud.create_game(s, gs)
        gs.guess_letter("C")
        gs.guess_letter("Z")
        crud.save_game_session(s, gs)
        assert gs.version == 1

    with Session(engine) as s:
        loaded = GameSession.from_record(crud.get_game(s, gs.id))
        assert loaded.guessed_letters == ["C", "Z"]
        assert loaded.wrong_guesses == 1
        assert loaded.version == 1


def test_stale_write_is_rejected(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        crud.create_game(s, GameSession.start(u.id, "CAT", ["pet", "purrs"]))
        record = crud.get_active_game(s, u.id)
        a = GameSession.from_record(record)
        b = GameSession.from_record(record)

        a.guess_letter("C")
        crud.save_game_session(s, a)

        b.guess_letter("Z")
        with pytest.raises(ConflictError):
            crud.save_game_session(s, b)

    with Session(engine) as s:
        loaded = GameSession.from_record(crud.get_game(s, a.id))
        assert loaded.guessed_letters == ["C"]


def test_update_terminal_status(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        gs = GameSession.start(u.id, "CAT", ["pet", "purrs"])
        crud.create_game(s, gs)

        with pytest.raises(ValidationError):
            crud.update_terminal_status(s, gs.id, models.IN_PROGRESS, 0, 0)
        with pytest.raises(ValidationError):
            crud.update_terminal_status(s, gs.id, models.LOST, -1, 0)
        with pytest.raises(NotFoundError):
            crud.update_terminal_status(s, "missing", models.LOST, 0, 0)

        g = crud.update_terminal_status(s, gs.id, models.LOST, 2, 1)
        assert g.game_status == models.LOST
        assert g.finished_at is not None
        assert g.version == 1
        assert crud.get_active_game(s, u.id) is None

        with pytest.raises(InvalidStateError):
            crud.update_terminal_status(s, gs.id, models.WON, 2, 1)


def test_history_newest_first(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        u = make_user(s)
        ids = []
        for word in ("CAT", "DOG", "ZEBRA"):
            gs = GameSession.start(u.id, word, ["a", "b"])
            crud.create_game(s, gs)
            gs.surrender()
            crud.save_game_session(s, gs)
            ids.append(gs.id)
        games = crud.list_games_for_user(s, u.id)
        assert [g.id for g in games] == list(reversed(ids))
        assert len(crud.list_games_for_user(s, u.id, limit=2)) == 2
        assert len(crud.list_completed_games(s)) == 3
        assert crud.get_user_names(s, [u.id, u.id]) == {u.id: "alice"}
