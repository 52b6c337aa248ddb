from decimal import Decimal

import pytest

from portal.common.errors import ConfigurationError, InvalidAccount, NotFoundError
from portal.donations_service import ledger
from portal.donations_service.ledger import (
    delete_donation,
    find_or_create_support_user,
    generate_unique_username,
    get_anonymous_donor_user,
    rebuild_cumulative_totals,
    record_donation,
    record_support_metadata,
    resolve_donor,
    update_donation,
)


def _donation_row(**overrides):
    row = {
        "donation_id": 10,
        "user_id": 5,
        "amount": Decimal("25.00"),
        "donated_on": "2024-05-01",
        "cumulative_total": Decimal("25.00"),
    }
    row.update(overrides)
    return row


def test_record_donation_requires_account(cursor):
    with pytest.raises(InvalidAccount):
        record_donation(cursor, None, Decimal("5"))
    cursor.execute.assert_not_called()


def test_record_donation_snapshots_running_total(cursor):
    cursor.fetchone.side_effect = [
        {"user_id": 5},                        # FOR UPDATE lock
        {"prior_total": Decimal("40.10")},     # prior sum
        _donation_row(amount=Decimal("9.95"), cumulative_total=Decimal("50.05")),
    ]

    result = record_donation(cursor, 5, Decimal("9.95"), "2024-05-01")

    lock_sql = cursor.execute.call_args_list[0][0][0]
    assert "FOR UPDATE" in lock_sql
    insert_sql, insert_params = cursor.execute.call_args_list[2][0]
    assert "INSERT INTO donations" in insert_sql
    assert insert_params == (5, Decimal("9.95"), "2024-05-01", Decimal("50.05"))
    assert result["cumulative_total"] == Decimal("50.05")


def test_record_donation_first_gift_defaults_date(cursor):
    cursor.fetchone.side_effect = [
        {"user_id": 5},
        {"prior_total": 0},
        _donation_row(),
    ]

    record_donation(cursor, 5, "25")

    _, params = cursor.execute.call_args_list[2][0]
    assert params[1] == Decimal("25.00")
    assert params[2]  # today's date
    assert params[3] == Decimal("25.00")


def test_sequential_totals_match_sum():
    amounts = [Decimal("10.10"), Decimal("0.05"), Decimal("99.99"), Decimal("1.00")]
    running = Decimal("0")
    for amount in amounts:
        running = ledger.round2(running + amount)
    assert running == ledger.round2(sum(amounts))


def test_record_donation_unknown_account(cursor):
    cursor.fetchone.return_value = None
    with pytest.raises(NotFoundError):
        record_donation(cursor, 999, Decimal("5"))


def test_generate_unique_username_adds_suffix(cursor):
    cursor.fetchone.side_effect = [{"user_id": 1}, {"user_id": 2}, None]
    assert generate_unique_username(cursor, "Jane.Doe@Example.org") == "jane.doe.example.org2"


def test_generate_unique_username_blank_base(cursor):
    cursor.fetchone.return_value = None
    assert generate_unique_username(cursor, "@@@").startswith("donor")


def test_find_or_create_support_user_existing(cursor):
    cursor.fetchone.return_value = {"user_id": 3, "username": "jane", "email": "jane@example.org"}
    user = find_or_create_support_user(cursor, "Jane", "Doe", "JANE@example.org")
    assert user["user_id"] == 3
    assert cursor.execute.call_count == 1


def test_find_or_create_support_user_creates_participant(cursor, mocker):
    mocker.patch("portal.donations_service.ledger.hash_password", return_value="$argon2id$hashed")
    cursor.fetchone.side_effect = [
        None,  # email lookup
        None,  # username free
        {"user_id": 12, "username": "jane.example.org", "email": "jane@example.org"},
    ]

    user = find_or_create_support_user(cursor, "Jane", "Doe", "jane@example.org")

    assert user["user_id"] == 12
    insert_sql, params = cursor.execute.call_args_list[-1][0]
    assert "INSERT INTO users" in insert_sql
    assert params[0] == "jane.example.org"
    assert params[1] == "$argon2id$hashed"
    assert params[2] == "participant"


def test_anonymous_donor_not_configured(cursor, mocker):
    mocker.patch("portal.common.config.ANONYMOUS_DONOR_USER_ID", None)
    with pytest.raises(ConfigurationError):
        get_anonymous_donor_user(cursor)


def test_anonymous_donor_missing_row(cursor, mocker):
    mocker.patch("portal.common.config.ANONYMOUS_DONOR_USER_ID", 42)
    cursor.fetchone.return_value = None
    with pytest.raises(NotFoundError):
        get_anonymous_donor_user(cursor)


def test_resolve_donor_prefers_logged_in_actor(cursor, participant):
    cursor.fetchone.return_value = {"user_id": 7, "username": "pat", "email": None}
    assert resolve_donor(cursor, participant, email="other@example.org")["user_id"] == 7


def test_resolve_donor_anonymous(cursor, mocker):
    mocker.patch("portal.common.config.ANONYMOUS_DONOR_USER_ID", 2)
    cursor.fetchone.return_value = {"user_id": 2, "username": "anonymous", "email": None}
    assert resolve_donor(cursor, None)["user_id"] == 2


def test_record_support_metadata_skips_empty(cursor):
    assert record_support_metadata(cursor, 10, None, None, None, None) is False
    cursor.execute.assert_not_called()


def test_record_support_metadata_inserts(cursor):
    assert record_support_metadata(cursor, 10, "Jane", None, None, "Keep it up") is True
    sql, params = cursor.execute.call_args[0]
    assert "support_donation_metadata" in sql
    assert params == (10, "Jane", None, None, "Keep it up")


def test_rebuild_cumulative_totals_fixes_drift(cursor):
    cursor.fetchone.return_value = {"user_id": 5}
    cursor.fetchall.return_value = [
        {"donation_id": 1, "amount": Decimal("10.00"), "cumulative_total": Decimal("10.00")},
        {"donation_id": 2, "amount": Decimal("5.00"), "cumulative_total": Decimal("40.00")},
        {"donation_id": 3, "amount": Decimal("2.50"), "cumulative_total": None},
    ]

    changed = rebuild_cumulative_totals(cursor, 5)

    assert changed == 2
    updates = [c[0][1] for c in cursor.execute.call_args_list if c[0][0].startswith("UPDATE")]
    assert updates == [(Decimal("15.00"), 2), (Decimal("17.50"), 3)]


def test_update_donation_moving_donor_rebuilds_both(cursor, mocker):
    rebuild = mocker.patch("portal.donations_service.ledger.rebuild_cumulative_totals")
    cursor.fetchone.side_effect = [
        _donation_row(user_id=5),   # get_donation
        {"user_id": 6},             # lock new donor
        _donation_row(user_id=6),   # UPDATE ... RETURNING
    ]

    update_donation(cursor, 10, 6, Decimal("25"), None)

    assert [c[0][1] for c in rebuild.call_args_list] == [6, 5]


def test_delete_donation_rebuilds_owner(cursor, mocker):
    rebuild = mocker.patch("portal.donations_service.ledger.rebuild_cumulative_totals")
    cursor.fetchone.return_value = _donation_row(user_id=5)

    delete_donation(cursor, 10)

    rebuild.assert_called_once_with(cursor, 5)
