"""
Transaction example with the closure form and manual begin/commit.

Run:
    python examples/sample_transactions.py
"""

from dotenv import load_dotenv

from duckbridge import Client, ConnectionSettings, RollbackError


def main() -> None:
    load_dotenv()

    with Client(ConnectionSettings.from_env()) as db:
        db.query("CREATE TABLE accounts (id INTEGER PRIMARY KEY, balance INTEGER)")
        db.query("INSERT INTO accounts VALUES (?, ?), (?, ?)", [1, 100, 2, 0])

        def transfer(tx) -> int:
            tx.query("UPDATE accounts SET balance = balance - ? WHERE id = ?", [30, 1])
            tx.query("UPDATE accounts SET balance = balance + ? WHERE id = ?", [30, 2])
            return 30

        moved = db.transaction(transfer)
        print("moved:", moved, db.query("SELECT id, balance FROM accounts ORDER BY id").rows)

        def overdraw(tx) -> None:
            tx.query("UPDATE accounts SET balance = balance - ? WHERE id = ?", [500, 1])
            balance = tx.query("SELECT balance FROM accounts WHERE id = ?", [1]).scalar()
            if balance < 0:
                tx.rollback("insufficient funds")

        try:
            db.transaction(overdraw)
        except RollbackError as exc:
            print("rolled back:", exc.reason)

        # Manual control
        db.begin()
        print("status:", db.status().value)
        db.query("DELETE FROM accounts WHERE id = ?", [2])
        db.rollback()
        print("after rollback:", db.query("SELECT COUNT(*) FROM accounts").scalar())


if __name__ == "__main__":
    main()
