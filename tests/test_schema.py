"""Tests for the migration runner that do not need a database."""

from pathlib import Path

from pgv.db.schema.migrate import MIGRATIONS_DIR, pending_migrations, split_sql_statements


class TestPendingMigrations:
    def test_fresh_database_gets_all_files_in_order(self):
        pending = pending_migrations(MIGRATIONS_DIR, set())

        assert [version for version, _ in pending] == [1, 2, 3, 4]
        assert pending[0][1].name == "001_customers_and_subscriptions.sql"

    def test_applied_versions_are_skipped(self):
        pending = pending_migrations(MIGRATIONS_DIR, {1, 2, 3})

        assert [path.name for _, path in pending] == ["004_dead_letter_resolution.sql"]

    def test_files_without_numeric_prefix_ignored(self, tmp_path: Path):
        (tmp_path / "010_later.sql").write_text("SELECT 1;")
        (tmp_path / "002_earlier.sql").write_text("SELECT 1;")
        (tmp_path / "notes.sql").write_text("SELECT 1;")

        pending = pending_migrations(tmp_path, set())

        assert [version for version, _ in pending] == [2, 10]


class TestSplitStatements:
    def test_simple_statements(self):
        sql = "CREATE TABLE a (id INT);\nCREATE TABLE b (id INT);"

        assert split_sql_statements(sql) == [
            "CREATE TABLE a (id INT);",
            "CREATE TABLE b (id INT);",
        ]

    def test_comments_removed(self):
        sql = "-- header\nSELECT 1; /* block\ncomment */ SELECT 2;"

        assert split_sql_statements(sql) == ["SELECT 1;", "SELECT 2;"]

    def test_dollar_quoted_body_kept_whole(self):
        sql = """
        CREATE FUNCTION f() RETURNS trigger AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        SELECT 1;
        """

        statements = split_sql_statements(sql)

        assert len(statements) == 2
        assert "RETURN NEW;" in statements[0]
        assert statements[0].endswith("LANGUAGE plpgsql;")

    def test_semicolon_inside_string(self):
        statements = split_sql_statements("INSERT INTO t VALUES ('a;b'); SELECT 1;")

        assert statements == ["INSERT INTO t VALUES ('a;b');", "SELECT 1;"]

    def test_shipped_migrations_parse(self):
        for _, path in pending_migrations(MIGRATIONS_DIR, set()):
            statements = split_sql_statements(path.read_text(encoding="utf-8"))
            assert statements
            assert all(statement.rstrip().endswith(";") for statement in statements)
