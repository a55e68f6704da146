import json

import pytest
from typer.testing import CliRunner
from unittest.mock import patch

from errors import StorageError
from main import app
from ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # --output writes to os.environ; restore it after every test
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")

@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "cli.db")

def invoke(db, *args):
    return runner.invoke(app, ["--db", db, *args])


def test_list_no_books(db):
    result = invoke(db, "books")
    assert result.exit_code == 0
    assert "No books in library." in result.stdout

def test_full_lending_session(db):
    assert "Author added with id 1." in invoke(db, "add-author", "A. Author").stdout
    assert "Book added with id 1." in invoke(db, "add-book", "Dune", "1", "--genre", "SF").stdout
    assert "Borrower added with id 1." in invoke(db, "add-borrower", "B. Reader", "reader@example.com").stdout

    result = invoke(db, "borrow", "1", "1", "--date", "2024-01-10")
    assert result.exit_code == 0
    assert "Book 1 borrowed (loan 1)." in result.stdout

    result = invoke(db, "books", "--available")
    assert "No books in library." in result.stdout

    result = invoke(db, "return", "1", "--date", "2024-01-20")
    assert result.exit_code == 0
    assert "Book 1 returned on 2024-01-20 (loan 1)." in result.stdout

    result = invoke(db, "history", "--book", "1")
    assert "borrow_date: 2024-01-10, return_date: 2024-01-20" in result.stdout

    result = invoke(db, "check")
    assert result.exit_code == 0
    assert "All books consistent." in result.stdout

def test_errors_exit_non_zero(db):
    result = invoke(db, "add-book", "Ghost", "42")
    assert result.exit_code == 1
    assert "Error: Author with id 42 not found." in result.stdout

    invoke(db, "add-author", "A. Author")
    invoke(db, "add-book", "Dune", "1")
    result = invoke(db, "return", "1", "--date", "2024-01-20")
    assert result.exit_code == 1
    assert "is not currently borrowed" in result.stdout

def test_history_needs_one_key(db):
    result = invoke(db, "history")
    assert result.exit_code == 1
    assert "exactly one of book_id or borrower_id" in result.stdout

@pytest.mark.parametrize("command, method", [
    ("authors", "list_authors"),
    ("borrowers", "list_borrowers"),
    ("stats", "get_statistics"),
    ("check", "check_consistency"),
])
def test_storage_errors_exit_non_zero(db, command, method):
    with patch(f"main.Library.{method}", side_effect=StorageError("disk I/O error")):
        result = invoke(db, command)
    assert result.exit_code == 1
    assert "Error: disk I/O error" in result.stdout

def test_json_output(db):
    invoke(db, "add-author", "A. Author")
    invoke(db, "add-book", "Dune", "1", "--genre", "SF")

    result = runner.invoke(app, ["--db", db, "--output", "json", "books"])
    assert result.exit_code == 0
    assert json.loads(result.stdout.strip().splitlines()[-1]) == [
        {"id": 1, "title": "Dune", "author_id": 1, "genre": "SF", "is_borrowed": False}
    ]

def test_stats_plain(db):
    invoke(db, "add-author", "A. Author")
    result = invoke(db, "stats")
    assert result.exit_code == 0
    assert "Total Authors: 1" in result.stdout

@patch("main.subprocess.run")
def test_serve_command(mock_subprocess_run, db):
    result = invoke(db, "serve", "--port", "8123")
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "api:app" in args
    assert "8123" in args
    assert mock_subprocess_run.call_args.kwargs["env"]["LIBRARY_DB_FILE"] == db
