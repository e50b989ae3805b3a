"""Tests for the healthfold command line."""

import pytest

from healthfold.cli import main


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run each CLI test from an empty directory (no stray healthfold.toml)."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def imported_db(workdir, samsung_export, capsys):
    export = workdir / "samsung_export.zip"
    export.write_bytes(samsung_export)
    db_path = str(workdir / "health.db")
    main(["import", str(export), "--db", db_path])
    capsys.readouterr()
    return db_path


class TestImport:
    def test_import_samsung_export(self, workdir, samsung_export, capsys):
        export = workdir / "samsung_export.zip"
        export.write_bytes(samsung_export)
        main(["import", str(export), "--db", str(workdir / "health.db")])
        out = capsys.readouterr().out
        assert "[completed]" in out
        assert "Found 5 records" in out
        assert "Successfully imported 5 records from 1 files" in out

    def test_unsupported_file_reported(self, workdir, capsys):
        notes = workdir / "notes.txt"
        notes.write_text("hello")
        main(["import", str(notes), "--db", str(workdir / "health.db")])
        out = capsys.readouterr().out
        assert "[error    ] notes.txt (unknown)" in out
        assert "Successfully imported 0 records from 0 files" in out

    def test_missing_file(self, workdir, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["import", str(workdir / "missing.csv"), "--db", str(workdir / "health.db")])
        assert exc_info.value.code == 1
        assert "cannot read" in capsys.readouterr().err

    def test_db_from_config(self, workdir, samsung_export):
        (workdir / "healthfold.toml").write_text('[database]\npath = "from_config.db"\n')
        export = workdir / "samsung_export.zip"
        export.write_bytes(samsung_export)
        main(["import", str(export)])
        assert (workdir / "from_config.db").exists()


class TestReadCommands:
    def test_summary(self, imported_db, capsys):
        main(["summary", "--db", imported_db])
        out = capsys.readouterr().out
        assert "Database Summary" in out
        assert "sleep" in out
        assert "vitals" not in out

    def test_history(self, imported_db, capsys):
        main(["history", "--db", imported_db])
        out = capsys.readouterr().out
        assert "samsung-health-zip" in out
        assert "samsung_export.zip" in out

    def test_history_empty(self, workdir, capsys):
        main(["history", "--db", str(workdir / "empty.db")])
        assert "(no imports)" in capsys.readouterr().out

    def test_query(self, imported_db, capsys):
        main(["query", "sleep", "--db", imported_db])
        out = capsys.readouterr().out
        assert "(3 rows)" in out
        assert "2024-03-01" in out

    def test_query_range(self, imported_db, capsys):
        main(["query", "activity", "--start", "2024-03-02", "--end", "2024-03-02", "--db", imported_db])
        assert "(1 rows)" in capsys.readouterr().out

    def test_query_no_results(self, imported_db, capsys):
        main(["query", "vitals", "--type", "weight", "--db", imported_db])
        assert "(no results)" in capsys.readouterr().out

    def test_query_type_without_type_column(self, imported_db, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["query", "sleep", "--type", "nap", "--db", imported_db])
        assert exc_info.value.code == 1
        assert "no type column" in capsys.readouterr().err

    def test_unknown_category(self, imported_db):
        with pytest.raises(SystemExit):
            main(["query", "patients", "--db", imported_db])


class TestConfigCommands:
    def test_init_config(self, workdir, capsys):
        out_path = workdir / "custom.toml"
        main(["init-config", "--output", str(out_path)])
        assert out_path.exists()
        assert "Config generated at" in capsys.readouterr().out

    def test_explicit_missing_config_warns(self, workdir, capsys):
        main(["summary", "--db", str(workdir / "x.db"), "--config", str(workdir / "nope.toml")])
        assert "not found" in capsys.readouterr().err

    def test_no_command(self, workdir):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
