import sqlite3

from invoicectl.db import connect_db, is_full_error


def test_full_error_detected():
    assert is_full_error(sqlite3.OperationalError("database or disk is full"))


def test_other_errors_mentioning_full_are_not_capacity():
    assert not is_full_error(sqlite3.OperationalError("no such column: fullname"))
    assert not is_full_error(sqlite3.OperationalError("table records is full of locks"))


def test_real_capacity_limit_raises_full(tmp_path):
    conn = connect_db(str(tmp_path / "small.db"), capacity_kb=64)
    try:
        try:
            with conn:
                conn.execute(
                    "INSERT INTO records VALUES ('a','invoice','a.pdf','Draft','t','t','{}',?,NULL)",
                    (b"x" * 512 * 1024,),
                )
        except sqlite3.OperationalError as e:
            assert is_full_error(e)
        else:
            raise AssertionError("write past capacity succeeded")
    finally:
        conn.close()
