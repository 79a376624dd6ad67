from pathlib import Path

from typer.testing import CliRunner

from restlite.cli import app

from tests.utils import write_migration

runner = CliRunner()


def _write_config(tmp_path: Path) -> Path:
    write_migration(
        tmp_path / "migrations",
        "001_init.sql",
        'CREATE EXTENSION IF NOT EXISTS "uuid-ossp";\n'
        "CREATE TABLE items (id SERIAL PRIMARY KEY, name VARCHAR(50));\n",
    )
    config_file = tmp_path / "restlite.yaml"
    config_file.write_text("sqlite_dir: ./db\nmigrations_dir: ./migrations\n", encoding="utf-8")
    return config_file


def test_translate(tmp_path: Path):
    path = write_migration(
        tmp_path,
        "001.sql",
        "CREATE EXTENSION pgcrypto;\nCREATE TABLE t (id SERIAL PRIMARY KEY, ok BOOLEAN);\n",
    )
    result = runner.invoke(app, ["migrate", "translate", str(path)])
    assert result.exit_code == 0
    assert result.output.strip() == "CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, ok INTEGER);"


def test_rollout_and_status(tmp_path: Path):
    config_file = _write_config(tmp_path)

    result = runner.invoke(app, ["migrate", "status", "-c", str(config_file)])
    assert result.exit_code == 0
    assert "[ ] 001_init.sql" in result.output

    result = runner.invoke(app, ["migrate", "rollout", "-c", str(config_file)])
    assert result.exit_code == 0
    assert "applied  001_init.sql" in result.output
    assert (tmp_path / "db" / "restlite.db").exists()

    result = runner.invoke(app, ["migrate", "status", "-c", str(config_file)])
    assert "[x] 001_init.sql" in result.output


def test_rollout_failure_exit_code(tmp_path: Path):
    config_file = _write_config(tmp_path)
    write_migration(tmp_path / "migrations", "002_bad.sql", "INSERT INTO missing VALUES (1);\n")

    result = runner.invoke(app, ["migrate", "rollout", "-c", str(config_file)])
    assert result.exit_code == 1
    assert "failed   002_bad.sql" in result.output
    assert "1 applied, 0 skipped, 1 failed" in result.output
