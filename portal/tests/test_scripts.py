import psycopg2

from portal.database import init_db, migrate_passwords


def test_migrate_passwords_counts_each_outcome(mock_db, mocker):
    mock_conn, mock_cursor = mock_db
    mocker.patch("portal.database.migrate_passwords.hash_password", side_effect=lambda p: f"$argon2id$new-{p}")
    mock_cursor.fetchall.return_value = [
        {"user_id": 1, "username": "old", "password_hash": "plaintext1"},
        {"user_id": 2, "username": "new", "password_hash": "$argon2id$v=19$existing"},
        {"user_id": 3, "username": "blank", "password_hash": "  "},
        {"user_id": 4, "username": "none", "password_hash": None},
    ]

    counts = migrate_passwords.migrate_passwords()

    assert counts == {"updated": 1, "already_hashed": 1, "skipped_invalid": 2}
    sql, params = mock_cursor.execute.call_args_list[-1][0]
    assert sql.startswith("UPDATE users")
    assert params == ("$argon2id$new-plaintext1", 1)


def test_migrate_passwords_continues_after_row_failure(mock_db, mocker):
    mock_conn, mock_cursor = mock_db
    mocker.patch("portal.database.migrate_passwords.hash_password", return_value="$argon2id$new")
    mock_cursor.fetchall.return_value = [
        {"user_id": 1, "username": "a", "password_hash": "one"},
        {"user_id": 2, "username": "b", "password_hash": "two"},
    ]

    def execute(sql, params=None):
        if sql.startswith("UPDATE") and params[1] == 1:
            raise psycopg2.OperationalError("lock timeout")

    mock_cursor.execute.side_effect = execute

    counts = migrate_passwords.migrate_passwords()

    assert counts == {"updated": 1, "already_hashed": 0, "skipped_invalid": 1}
    assert mock_conn.commit.call_count == 2  # initial read + user 2


def test_migrate_passwords_main_fails_on_initial_read(mocker):
    mocker.patch("portal.database.db_connection.get_db", side_effect=psycopg2.OperationalError("down"))
    assert migrate_passwords.main() == 1


def test_init_db_reports_missing_tables(mock_db, mocker):
    _, mock_cursor = mock_db
    mocker.patch("portal.database.init_db.load_schema", return_value="CREATE TABLE x ();")
    mock_cursor.fetchone.side_effect = [
        {"found": None} if table == "surveys" else {"found": table} for table in init_db.CRITICAL_TABLES
    ]

    assert init_db.init_db() == ["surveys"]
    mock_cursor.execute.assert_any_call("CREATE TABLE x ();")


def test_schema_file_defines_every_table():
    schema = init_db.load_schema()
    for table in init_db.CRITICAL_TABLES:
        assert f"CREATE TABLE IF NOT EXISTS {table}" in schema
