from datetime import datetime, timezone


def test_timestamp_round_trip(db):
    dt = datetime(2025, 3, 14, 15, 9, 26, 535897)
    db.query("CREATE TABLE a (ts TIMESTAMP)")
    db.query("INSERT INTO a VALUES (CAST(? AS TIMESTAMP))", [dt])

    result = db.query("SELECT * FROM a")
    assert result.columns[0].type.startswith("Timestamp(")
    assert result.rows == [[dt.replace(tzinfo=timezone.utc)]]


def test_array(db):
    db.query("CREATE TABLE a (v INTEGER[4])")
    db.query("INSERT INTO a VALUES (?::INTEGER[4])", ["[2, 1, 3, 7]"])
    assert db.query("SELECT * FROM a").rows == [[[2, 1, 3, 7]]]


def test_list(db):
    db.query("CREATE TABLE a (v INTEGER[])")
    db.query("INSERT INTO a VALUES (?::INTEGER[])", ["[2, 1, 3, 7]"])
    assert db.query("SELECT * FROM a").rows == [[[2, 1, 3, 7]]]


def test_null_and_boolean(db):
    result = db.query("SELECT NULL AS n, TRUE AS b, ?::BOOLEAN AS p", [False])
    assert result.rows == [[None, True, False]]
