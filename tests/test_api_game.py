from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine, Session, select

from hangman import crud, models
from hangman.config import Settings
from hangman.init_db import seed_words
from hangman.main import create_app

CAT = {'word': "CAT", 'hint1': "A common pet", 'hint2': "It purrs"}


def setup_db(tmp_path, words=(CAT,)):
    db = tmp_path / 'game.db'
    engine = create_engine(f'sqlite:///{db}', connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    if words:
        seed_words(engine, words)
    return engine


def make_client(engine, **overrides):
    return TestClient(create_app(engine, Settings(secret_key="test-secret", **overrides)))


def signed_in(client, name="alice"):
    r = client.post('/api/auth/sign-up', json={"name": name, "email": f"{name}@example.com", "password": "GoodPass1"})
    assert r.status_code == 201
    return r.json()['user']


def other_client(client, name):
    c = TestClient(client.app)
    signed_in(c, name)
    return c


def play(client, letters):
    r = None
    for letter in letters:
        r = client.post('/api/game/guess', json={"letter": letter})
        assert r.status_code == 200, r.text
    return r


def test_game_endpoints_require_auth(tmp_path):
    client = make_client(setup_db(tmp_path))
    for path in ('/api/game/start', '/api/game/guess', '/api/game/hint', '/api/game/surrender'):
        r = client.post(path, json={"letter": "a"})
        assert r.status_code == 401, path
    for path in ('/api/game/current', '/api/game/history', '/api/game/stats', '/api/game/leaderboard'):
        assert client.get(path).status_code == 401, path


def test_start_game_hides_word(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)

    r = client.post('/api/game/start')
    assert r.status_code == 201
    game = r.json()['game']
    assert game['game_status'] == models.IN_PROGRESS
    assert game['word_length'] == 3
    assert game['display'] == ["_", "_", "_"]
    assert game['max_wrong_guesses'] == 6 and game['max_hints'] == 2
    assert 'word' not in game

    current = client.get('/api/game/current').json()
    assert current['active'] is True
    assert current['game']['game_id'] == game['game_id']


def test_second_start_conflicts_with_game_reference(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)
    first = client.post('/api/game/start').json()['game']

    r = client.post('/api/game/start')
    assert r.status_code == 409
    body = r.json()
    assert body['error'] == "conflict"
    assert body['game_id'] == first['game_id']


def test_full_game_with_hints(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)
    client.post('/api/game/start')

    r = client.post('/api/game/guess', json={"letter": "c"})
    assert r.status_code == 200
    data = r.json()
    assert data['result']['correct'] is True
    assert data['result']['message'] == "Correct letter!"
    assert data['game']['display'] == ["C", "_", "_"]

    repeat = client.post('/api/game/guess', json={"letter": "C"}).json()
    assert repeat['result']['already_guessed'] is True
    assert repeat['game']['guessed_letters'] == ["C"]

    h1 = client.post('/api/game/hint')
    assert h1.status_code == 200
    assert h1.json()['hint'] == "A common pet"
    h2 = client.post('/api/game/hint', json={})
    assert h2.json()['hint'] == "It purrs"
    assert h2.json()['remaining_hints'] == 0
    h3 = client.post('/api/game/hint')
    assert h3.status_code == 409
    assert h3.json()['error'] == "hints_exhausted"

    wrong = client.post('/api/game/guess', json={"letter": "z"}).json()
    assert wrong['result']['correct'] is False
    assert wrong['game']['wrong_guesses'] == 1

    done = play(client, "AT").json()
    assert done['result']['game_status'] == models.WON
    assert done['result']['message'] == "Congratulations! You won!"
    assert done['game']['word'] == "CAT"
    # 30 - (1 + 0.5 * 2) * 2
    assert done['game']['score'] == 26.0

    after = client.post('/api/game/guess', json={"letter": "q"})
    assert after.status_code == 409
    assert after.json()['error'] == "invalid_state"
    assert client.get('/api/game/current').json() == {"active": False}


def test_invalid_letters_are_rejected(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)
    client.post('/api/game/start')
    for bad in ("1", "ab", "", "!", "c\n"):
        r = client.post('/api/game/guess', json={"letter": bad})
        assert r.status_code == 400, bad
        assert r.json()['error'] == "validation_error"
    assert client.post('/api/game/guess', json={}).status_code == 422
    game = client.get('/api/game/current').json()['game']
    assert game['guessed_letters'] == [] and game['wrong_guesses'] == 0


def test_guess_without_active_game(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)
    r = client.post('/api/game/guess', json={"letter": "a"})
    assert r.status_code == 409
    assert r.json()['error'] == "invalid_state"


def test_losing_and_surrender(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)
    client.post('/api/game/start')
    lost = play(client, "XYZQWV").json()
    assert lost['result']['game_status'] == models.LOST
    assert lost['result']['message'] == "Game over! You ran out of guesses."
    assert lost['game']['wrong_guesses'] == 6
    assert lost['game']['score'] == 0.0

    gid = client.post('/api/game/start').json()['game']['game_id']
    r = client.post('/api/game/surrender', json={"game_id": gid})
    assert r.status_code == 200
    assert r.json()['game']['game_status'] == models.LOST
    assert r.json()['game']['word'] == "CAT"
    assert client.post('/api/game/surrender').status_code == 409


def test_other_users_game_is_not_found(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)
    gid = client.post('/api/game/start').json()['game']['game_id']

    bob = other_client(client, "bob")
    r = bob.post('/api/game/guess', json={"letter": "c", "game_id": gid})
    assert r.status_code == 404
    assert r.json()['error'] == "not_found"


def test_start_without_words_is_dependency_error(tmp_path):
    client = make_client(setup_db(tmp_path, words=()))
    signed_in(client)
    r = client.post('/api/game/start')
    assert r.status_code == 503
    assert r.json()['error'] == "dependency_error"


def test_active_game_conflict_reported_before_word_lookup(tmp_path):
    engine = setup_db(tmp_path)
    client = make_client(engine)
    signed_in(client)
    gid = client.post('/api/game/start').json()['game']['game_id']

    with Session(engine) as s:
        for w in s.exec(select(models.Word)).all():
            s.delete(w)
        s.commit()

    r = client.post('/api/game/start')
    assert r.status_code == 409
    assert r.json()['error'] == "conflict"
    assert r.json()['game_id'] == gid


def test_abandoned_game_expires_on_next_start(tmp_path):
    engine = setup_db(tmp_path)
    client = make_client(engine)
    signed_in(client)
    old = client.post('/api/game/start').json()['game']['game_id']

    with Session(engine) as s:
        g = crud.get_game(s, old)
        g.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        s.add(g)
        s.commit()

    assert client.get('/api/game/current').json() == {"active": False}
    with Session(engine) as s:
        assert crud.get_game(s, old).game_status == models.LOST

    r = client.post('/api/game/start')
    assert r.status_code == 201
    assert r.json()['game']['game_id'] != old


def test_expiry_can_be_disabled(tmp_path):
    client = make_client(setup_db(tmp_path), game_ttl_minutes=0)
    signed_in(client)
    game = client.post('/api/game/start').json()['game']
    gid = game['game_id']
    with Session(client.app.state.engine) as s:
        assert crud.get_game(s, gid).expires_at is None


def test_history_and_stats(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)

    client.post('/api/game/start')
    play(client, "CAT")
    client.post('/api/game/start')
    play(client, "XYZQWV")
    client.post('/api/game/start')
    client.post('/api/game/hint')

    history = client.get('/api/game/history').json()['games']
    assert len(history) == 3
    assert history[0]['game_status'] == models.IN_PROGRESS
    assert 'word' not in history[0]
    assert [g['game_status'] for g in history[1:]] == [models.LOST, models.WON]
    assert len(client.get('/api/game/history', params={"limit": 1}).json()['games']) == 1
    assert client.get('/api/game/history', params={"limit": 0}).status_code == 400

    body = client.get('/api/game/stats').json()
    assert body['user']['name'] == "alice"
    stats = body['stats']
    assert stats['total_games'] == 3
    assert stats['games_won'] == 1 and stats['games_lost'] == 1
    assert stats['games_in_progress'] == 1
    assert stats['win_rate'] == 50.0
    assert stats['best_game'] == 0 and stats['worst_game'] == 6
    assert stats['perfect_games'] == 1
    assert stats['average_wrong_guesses'] == 2.0
    assert stats['placement'] is None
    assert stats['recent_games'][0]['word'] is None


def test_leaderboard_eligibility_and_cache_invalidation(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)

    for _ in range(2):
        client.post('/api/game/start')
        play(client, "CAT")
    lb = client.get('/api/game/leaderboard').json()
    assert lb['leaderboard'] == [] and lb['total_players'] == 0

    # finishing the third game makes alice eligible and drops the cached board
    client.post('/api/game/start')
    play(client, "CAT")
    lb = client.get('/api/game/leaderboard').json()
    assert lb['total_players'] == 1
    top = lb['leaderboard'][0]
    assert top['rank'] == 1
    assert top['user']['name'] == "alice"
    assert top['stats']['overall_score'] == 136.0

    assert client.get('/api/game/stats').json()['stats']['placement'] == 1
    assert client.get('/api/game/leaderboard', params={"limit": 0}).status_code == 400
    assert client.get('/api/cache/stats').json()['cache_stats']['hits'] >= 0


def test_leaderboard_ranks_players(tmp_path):
    client = make_client(setup_db(tmp_path))
    signed_in(client)
    bob = other_client(client, "bob")

    for _ in range(3):
        client.post('/api/game/start')
        play(client, "CAT")
        bob.post('/api/game/start')
        play(bob, "ZCAT")

    leaders = client.get('/api/game/leaderboard').json()['leaderboard']
    assert [l['user']['name'] for l in leaders] == ["alice", "bob"]
    assert [l['rank'] for l in leaders] == [1, 2]
    assert leaders[1]['stats']['average_wrong_guesses'] == 1.0
    assert leaders[1]['stats']['overall_score'] == 134.0
