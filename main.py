import logging
import os
import subprocess
import sys
from datetime import date
from functools import wraps
from typing import Optional

import typer
from rich.console import Console

from config import settings
from errors import LibraryError
from library import Library
from ui_helpers import set_output_mode, print_records, print_stats_result

APP_NAME = "Library CLI"

console = Console()

BOOK_COLUMNS = ["id", "title", "author_id", "genre", "is_borrowed"]
AUTHOR_COLUMNS = ["id", "name"]
BORROWER_COLUMNS = ["id", "name", "email"]
LOAN_COLUMNS = ["id", "book_id", "borrower_id", "borrow_date", "return_date"]

app = typer.Typer(help=APP_NAME)


def _library(ctx: typer.Context) -> Library:
    """Build the Library for this invocation on first use."""
    state = ctx.ensure_object(dict)
    if state.get("library") is None:
        state["library"] = Library(state.get("db_file"))
    return state["library"]


def handle_errors(func):
    """Turn library errors into a one-line message and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (LibraryError, ValueError) as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
    return wrapper


@app.callback()
def _global_options(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file (default: LIBRARY_DB_FILE or library.db)"),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
):
    """Global options (database file, output mode)."""
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)["db_file"] = db
    if output:
        set_output_mode(output)


# ------------------------- Authors ------------------------- #
@app.command("add-author")
@handle_errors
def cli_add_author(ctx: typer.Context, name: str):
    """Add an author."""
    author_id = _library(ctx).add_author(name)
    print(f"Author added with id {author_id}.")


@app.command("authors")
@handle_errors
def cli_authors(ctx: typer.Context):
    """List all authors."""
    print_records("Authors", _library(ctx).list_authors(), AUTHOR_COLUMNS, "No authors in library.")


@app.command("rename-author")
@handle_errors
def cli_rename_author(ctx: typer.Context, author_id: int, name: str):
    """Correct an author's name."""
    _library(ctx).update_author_name(author_id, name)
    print(f"Author {author_id} renamed.")


@app.command("delete-author")
@handle_errors
def cli_delete_author(ctx: typer.Context, author_id: int):
    """Delete an author that no book references."""
    _library(ctx).delete_author(author_id)
    print(f"Author {author_id} deleted.")


# ------------------------- Books ------------------------- #
@app.command("add-book")
@handle_errors
def cli_add_book(
    ctx: typer.Context,
    title: str,
    author_id: int,
    genre: str = typer.Option("", "--genre", "-g", help="Genre of the book"),
):
    """Add a book by an existing author."""
    book_id = _library(ctx).add_book(title, author_id, genre)
    print(f"Book added with id {book_id}.")


@app.command("books")
@handle_errors
def cli_books(
    ctx: typer.Context,
    available: bool = typer.Option(False, "--available", "-a", help="Only books that are not on loan"),
    author_id: Optional[int] = typer.Option(None, "--author", help="Only books by this author id"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Only books of this genre"),
):
    """List books, optionally filtered."""
    books = _library(ctx).list_books(available_only=available, author_id=author_id, genre=genre)
    print_records("Books", books, BOOK_COLUMNS, "No books in library.")


@app.command("update-book")
@handle_errors
def cli_update_book(ctx: typer.Context, book_id: int, new_title: str):
    """Change the title of a book."""
    _library(ctx).update_book_title(book_id, new_title)
    print(f"Book {book_id} updated.")


@app.command("delete-book")
@handle_errors
def cli_delete_book(ctx: typer.Context, book_id: int):
    """Delete a book that has never been lent."""
    _library(ctx).delete_book(book_id)
    print(f"Book {book_id} deleted.")


# ------------------------- Borrowers ------------------------- #
@app.command("add-borrower")
@handle_errors
def cli_add_borrower(ctx: typer.Context, name: str, email: str):
    """Register a borrower."""
    borrower_id = _library(ctx).add_borrower(name, email)
    print(f"Borrower added with id {borrower_id}.")


@app.command("borrowers")
@handle_errors
def cli_borrowers(ctx: typer.Context):
    """List all borrowers."""
    print_records("Borrowers", _library(ctx).list_borrowers(), BORROWER_COLUMNS, "No borrowers registered.")


@app.command("delete-borrower")
@handle_errors
def cli_delete_borrower(ctx: typer.Context, borrower_id: int):
    """Delete a borrower with no loan history."""
    _library(ctx).delete_borrower(borrower_id)
    print(f"Borrower {borrower_id} deleted.")


# ------------------------- Lending ------------------------- #
@app.command("borrow")
@handle_errors
def cli_borrow(
    ctx: typer.Context,
    book_id: int,
    borrower_id: int,
    on: Optional[str] = typer.Option(None, "--date", "-d", help="Borrow date YYYY-MM-DD (default: today)"),
):
    """Lend a book to a borrower."""
    loan_id = _library(ctx).borrow_book(book_id, borrower_id, on or date.today().isoformat())
    print(f"Book {book_id} borrowed (loan {loan_id}).")


@app.command("return")
@handle_errors
def cli_return(
    ctx: typer.Context,
    book_id: int,
    on: Optional[str] = typer.Option(None, "--date", "-d", help="Return date YYYY-MM-DD (default: today)"),
):
    """Take a borrowed book back."""
    loan = _library(ctx).return_book(book_id, on or date.today().isoformat())
    print(f"Book {book_id} returned on {loan.return_date} (loan {loan.id}).")


@app.command("history")
@handle_errors
def cli_history(
    ctx: typer.Context,
    book_id: Optional[int] = typer.Option(None, "--book", help="Loans of this book id"),
    borrower_id: Optional[int] = typer.Option(None, "--borrower", help="Loans of this borrower id"),
    open_only: bool = typer.Option(False, "--open", help="Only loans not yet returned"),
):
    """Show the loan history of a book or a borrower."""
    loans = _library(ctx).list_loan_history(book_id=book_id, borrower_id=borrower_id, open_only=open_only)
    print_records("Loans", loans, LOAN_COLUMNS, "No loans found.")


# ------------------------- Reports ------------------------- #
@app.command("stats")
@handle_errors
def cli_stats(ctx: typer.Context):
    """Show library statistics."""
    print_stats_result(_library(ctx).get_statistics())


@app.command("check")
@handle_errors
def cli_check(ctx: typer.Context):
    """Verify that every book's borrowed flag matches its open loans."""
    broken = _library(ctx).check_consistency()
    if broken:
        print(f"Inconsistent books: {', '.join(str(b) for b in broken)}")
        raise typer.Exit(code=1)
    print("All books consistent.")


@app.command("serve")
def cli_serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: API_PORT)"),
):
    """Start the HTTP API with Uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    env = dict(os.environ)
    db_file = ctx.ensure_object(dict).get("db_file")
    if db_file:
        env["LIBRARY_DB_FILE"] = db_file
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, env=env)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/]")


if __name__ == "__main__":
    app()
