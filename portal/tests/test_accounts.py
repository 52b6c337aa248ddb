import psycopg2
import pytest

from portal.common.errors import CascadeDeleteFailed, InvalidAccountId, NotFoundError
from portal.users_service.accounts import build_account_payload, delete_account_with_relations


def test_build_account_payload_valid():
    payload, errors = build_account_payload({
        "first_name": " Ada ",
        "last_name": "Lovelace",
        "email": "ada@example.org",
        "phone": "(555) 000-1234",
        "zip": "12345",
        "dob": "1990-12-10",
        "city": "London",
    })
    assert errors == []
    assert payload["first_name"] == "Ada"
    assert payload["phone"] == "5550001234"
    assert payload["city"] == "London"
    assert payload["state"] is None


def test_build_account_payload_collects_errors_in_order():
    _, errors = build_account_payload({
        "first_name": "",
        "last_name": "X",
        "email": "nope",
        "zip": "1234",
        "dob": "2024-02-30",
    })
    assert errors == [
        "First and last name are required",
        "Email must be valid",
        "ZIP code must be 5 or 9 digits",
        "Date of birth must be a valid YYYY-MM-DD value",
    ]


@pytest.mark.parametrize("raw", [None, "", "0", "-4", "abc", "1.5"])
def test_delete_rejects_bad_ids(raw, mock_db):
    with pytest.raises(InvalidAccountId):
        delete_account_with_relations(raw)
    mock_conn, _ = mock_db
    mock_conn.cursor.assert_not_called()


def test_delete_cascades_in_order(mock_db):
    mock_conn, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = {"user_id": 4}
    mock_cursor.fetchall.return_value = [{"registration_id": 11}, {"registration_id": 12}]
    mock_cursor.rowcount = 1

    removed = delete_account_with_relations("4")

    statements = [c[0][0] for c in mock_cursor.execute.call_args_list]
    assert "FOR UPDATE" in statements[0]
    assert statements[2].startswith("DELETE FROM surveys")
    assert mock_cursor.execute.call_args_list[2][0][1] == ([11, 12],)
    assert [s.split()[2] for s in statements[3:]] == ["registrations", "milestones", "donations", "users"]
    assert set(removed) == {"surveys", "registrations", "milestones", "donations", "users"}
    mock_conn.commit.assert_called_once()
    mock_conn.close.assert_called_once()


def test_delete_without_registrations_skips_surveys(mock_db):
    _, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = {"user_id": 4}
    mock_cursor.fetchall.return_value = []
    mock_cursor.rowcount = 0

    removed = delete_account_with_relations(4)

    assert removed["surveys"] == 0
    assert not any("surveys" in c[0][0] for c in mock_cursor.execute.call_args_list)


def test_delete_missing_user(mock_db):
    mock_conn, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = None
    with pytest.raises(NotFoundError):
        delete_account_with_relations(4)
    mock_conn.rollback.assert_called_once()


def test_delete_failure_rolls_back_everything(mock_db):
    mock_conn, mock_cursor = mock_db
    mock_cursor.fetchone.return_value = {"user_id": 4}
    mock_cursor.fetchall.return_value = [{"registration_id": 11}]

    def execute(sql, params=None):
        if sql.startswith("DELETE FROM donations"):
            raise psycopg2.IntegrityError("constraint violation")

    mock_cursor.execute.side_effect = execute

    with pytest.raises(CascadeDeleteFailed):
        delete_account_with_relations(4)

    mock_conn.rollback.assert_called_once()
    mock_conn.commit.assert_not_called()
    mock_conn.close.assert_called_once()
