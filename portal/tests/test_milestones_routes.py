def test_participant_sees_own_milestones(client, mock_db, login_as):
    login_as(user_id=7)
    _, mock_cursor = mock_db
    mock_cursor.fetchall.return_value = [
        {"milestone_id": 1, "user_id": 7, "title": "First robot", "achieved_on": "2024-03-01",
         "username": "pat", "first_name": "Pat", "last_name": "Lee"},
    ]

    response = client.get("/milestones/")

    assert response.status_code == 200
    assert b"First robot" in response.data
    sql, params = mock_cursor.execute.call_args[0]
    assert "WHERE m.user_id = %s" in sql
    assert params == [7]


def test_create_milestone(client, mock_db, login_as):
    login_as(user_id=1, role="admin")
    _, mock_cursor = mock_db
    mock_cursor.fetchone.side_effect = [{"user_id": 7}, {"milestone_id": 3}]

    response = client.post("/milestones/new", data={"user_id": "7", "title": "First robot", "achieved_on": "2024-03-01"})

    assert response.status_code == 302
    _, params = mock_cursor.execute.call_args[0]
    assert params == (7, "First robot", "2024-03-01")


def test_create_milestone_unknown_user(client, mock_db, login_as):
    login_as(user_id=1, role="admin")
    _, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = None

    response = client.post("/milestones/new", data={"user_id": "99", "title": "X", "achieved_on": "2024-03-01"})

    assert response.status_code == 400
    assert b"User not found" in response.data


def test_create_milestone_bad_date(client, login_as):
    login_as(user_id=1, role="admin")
    response = client.post("/milestones/new", data={"user_id": "7", "title": "X", "achieved_on": "2024-02-30"})
    assert response.status_code == 400
    assert b"valid YYYY-MM-DD" in response.data


def test_create_milestone_admin_only(client, login_as):
    login_as(user_id=7)
    assert client.post("/milestones/new", data={"user_id": "7", "title": "X", "achieved_on": "2024-03-01"}).status_code == 403


def test_delete_missing_milestone(client, mock_db, login_as):
    login_as(user_id=1, role="admin")
    _, mock_cursor = mock_db
    mock_cursor.rowcount = 0
    assert client.post("/milestones/5/delete").status_code == 404
