from dotenv import load_dotenv

from duckbridge import Client, ConnectionSettings, SQLError


def main():
    # Load DUCKBRIDGE_* variables from .env file
    load_dotenv()

    settings = ConnectionSettings.from_env()

    with Client(settings) as db:
        print("Creating table 'person'...")
        db.query("CREATE TABLE person (name TEXT, data INTEGER)")
        db.query("INSERT INTO person (name, data) VALUES (?, ?), (?, ?)", ["Foo", 1, "Bar", 2])

        result = db.query("SELECT name, data FROM person ORDER BY data")
        print("columns:", [tuple(column) for column in result.columns])
        for row in result.rows:
            print(row)

        # Prepare once, execute with different params
        query, first = db.prepare_execute("SELECT name FROM person WHERE data = ?", [1])
        second = db.execute(query, [2])
        print("data=1 ->", first.rows, "data=2 ->", second.rows)
        db.close(query)

        # Errors from the worker keep the connection usable
        outcome = db.try_query("SELECT * FROM non_existent")
        if isinstance(outcome, SQLError):
            print("expected failure:", outcome.message)

        print("still alive:", db.query("SELECT 42 AS answer").scalar())


if __name__ == "__main__":
    main()
