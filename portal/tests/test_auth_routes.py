import psycopg2.errors

from portal.auth_service.passwords import hash_password


def test_login_form_renders(client):
    response = client.get("/auth/login")
    assert response.status_code == 200
    assert b"Log in" in response.data


def test_login_missing_fields(client):
    response = client.post("/auth/login", data={"username": "pat"})
    assert response.status_code == 400
    assert b"Username and password are required" in response.data


def test_login_success_sets_session(client, mock_db):
    _, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = {
        "user_id": 7,
        "username": "pat",
        "password_hash": hash_password("password123"),
        "role": "participant",
        "photo_url": None,
    }

    response = client.post("/auth/login", data={"username": "pat", "password": "password123"})

    assert response.status_code == 302
    with client.session_transaction() as sess:
        assert sess["user"]["user_id"] == 7
        assert sess["user"]["role"] == "participant"


def test_login_wrong_password(client, mock_db):
    _, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = {
        "user_id": 7,
        "username": "pat",
        "password_hash": hash_password("password123"),
        "role": "participant",
        "photo_url": None,
    }

    response = client.post("/auth/login", data={"username": "pat", "password": "nope"})

    assert response.status_code == 401
    assert b"Invalid username or password" in response.data


def test_login_unknown_user(client, mock_db):
    _, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = None
    response = client.post("/auth/login", data={"username": "ghost", "password": "password123"})
    assert response.status_code == 401


def test_login_database_down(client, mocker):
    mocker.patch("portal.database.db_connection.get_db", side_effect=psycopg2.OperationalError("down"))
    response = client.post("/auth/login", data={"username": "pat", "password": "password123"})
    assert response.status_code == 500
    assert b"Server error" in response.data


def test_signup_creates_participant(client, mock_db, mocker):
    _, mock_cursor = mock_db
    mocker.patch("portal.auth_service.routes.hash_password", return_value="$argon2id$hashed")
    mock_cursor.fetchone.return_value = {"user_id": 12, "username": "newbie", "role": "participant", "photo_url": None}

    response = client.post("/auth/signup", data={
        "username": "newbie",
        "password": "password123",
        "confirm_password": "password123",
    })

    assert response.status_code == 302
    _, params = mock_cursor.execute.call_args[0]
    assert params == ("newbie", "$argon2id$hashed", "participant")
    with client.session_transaction() as sess:
        assert sess["user"]["username"] == "newbie"


def test_signup_short_password(client):
    response = client.post("/auth/signup", data={
        "username": "newbie",
        "password": "short",
        "confirm_password": "short",
    })
    assert response.status_code == 400
    assert b"at least 8 characters" in response.data


def test_signup_password_mismatch(client):
    response = client.post("/auth/signup", data={
        "username": "newbie",
        "password": "password123",
        "confirm_password": "password124",
    })
    assert response.status_code == 400
    assert b"Passwords do not match" in response.data


def test_signup_duplicate_username(client, mock_db):
    _, mock_cursor = mock_db
    mock_cursor.execute.side_effect = psycopg2.errors.UniqueViolation()

    response = client.post("/auth/signup", data={
        "username": "taken",
        "password": "password123",
        "confirm_password": "password123",
    })

    assert response.status_code == 400
    assert b"Username already taken" in response.data


def test_logout_clears_session(client, login_as):
    login_as()
    response = client.get("/auth/logout")
    assert response.status_code == 302
    with client.session_transaction() as sess:
        assert "user" not in sess
