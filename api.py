import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from errors import (
    BookOnLoanError,
    EntityInUseError,
    LendingStateError,
    LibraryError,
    NotFoundError,
    StorageError,
    UnknownAuthorError,
    UnknownBorrowerError,
    ValidationError,
)
from library import Library

logger = logging.getLogger(__name__)

# Most specific first; ids in a request body are a client error (400),
# ids in the path that do not exist are a 404.
ERROR_STATUS = [
    (ValidationError, 422),
    (UnknownAuthorError, 400),
    (UnknownBorrowerError, 400),
    (NotFoundError, 404),
    (LendingStateError, 409),
    (BookOnLoanError, 409),
    (EntityInUseError, 409),
    (StorageError, 503),
]


def status_for(exc: LibraryError) -> int:
    for cls, status_code in ERROR_STATUS:
        if isinstance(exc, cls):
            return status_code
    return 500


# --- Models ---
class AuthorModel(BaseModel):
    id: int
    name: str

class AuthorCreateModel(BaseModel):
    name: str

class BookModel(BaseModel):
    id: int
    title: str
    author_id: int
    genre: str
    is_borrowed: bool

class BookCreateModel(BaseModel):
    title: str
    author_id: int
    genre: str = ""

class UpdateBookModel(BaseModel):
    title: str | None = None
    author_id: int | None = None
    genre: str | None = None

class BorrowerModel(BaseModel):
    id: int
    name: str
    email: str

class BorrowerCreateModel(BaseModel):
    name: str
    email: str

class LoanModel(BaseModel):
    id: int
    book_id: int
    borrower_id: int
    borrow_date: str
    return_date: str | None = None

class BorrowRequestModel(BaseModel):
    borrower_id: int
    date: str | None = Field(default=None, description="YYYY-MM-DD, defaults to today")

class ReturnRequestModel(BaseModel):
    date: str | None = Field(default=None, description="YYYY-MM-DD, defaults to today")

class StatsModel(BaseModel):
    total_books: int
    borrowed_books: int
    available_books: int
    total_authors: int
    total_borrowers: int
    open_loans: int
    total_loans: int


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Dependency that checks the API key on write endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_library(request: Request) -> Library:
    return request.app.state.library


def _today() -> str:
    return date.today().isoformat()


def create_app(library: Optional[Library] = None) -> FastAPI:
    """Build the HTTP app around ``library``.

    When no library is given, one is opened on ``settings.database_file`` at
    startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level.upper())
        if getattr(app.state, "library", None) is None:
            app.state.library = Library(settings.database_file)
            logger.info(f"Library opened on {app.state.library.db_file}")
        yield

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.library = library

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": type(exc).__name__})

    # --- Health ---
    @app.get("/health")
    def health(lib: Library = Depends(get_library)):
        db_ok = True
        try:
            lib.get_statistics()
        except StorageError:
            db_ok = False
        return {
            "status": "healthy" if db_ok else "degraded",
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "db": db_ok,
        }

    @app.get("/stats", response_model=StatsModel)
    def get_library_stats(lib: Library = Depends(get_library)):
        return StatsModel(**lib.get_statistics())

    # --- Authors ---
    @app.get("/authors", response_model=List[AuthorModel])
    def list_authors(lib: Library = Depends(get_library)):
        return [AuthorModel(**a.to_dict()) for a in lib.list_authors()]

    @app.post("/authors", response_model=AuthorModel, status_code=201, dependencies=[Depends(get_api_key)])
    def add_author(payload: AuthorCreateModel, lib: Library = Depends(get_library)):
        author_id = lib.add_author(payload.name)
        return AuthorModel(**lib.get_author(author_id).to_dict())

    @app.get("/authors/{author_id}", response_model=AuthorModel)
    def get_author(author_id: int, lib: Library = Depends(get_library)):
        return AuthorModel(**lib.get_author(author_id).to_dict())

    @app.put("/authors/{author_id}", response_model=AuthorModel, dependencies=[Depends(get_api_key)])
    def rename_author(author_id: int, payload: AuthorCreateModel, lib: Library = Depends(get_library)):
        lib.update_author_name(author_id, payload.name)
        return AuthorModel(**lib.get_author(author_id).to_dict())

    @app.delete("/authors/{author_id}", dependencies=[Depends(get_api_key)])
    def delete_author(author_id: int, lib: Library = Depends(get_library)):
        lib.delete_author(author_id)
        return {"message": "Author deleted."}

    # --- Books ---
    @app.get("/books", response_model=List[BookModel])
    def list_books(
        available_only: bool = Query(False),
        author_id: Optional[int] = Query(None),
        genre: Optional[str] = Query(None),
        lib: Library = Depends(get_library),
    ):
        books = lib.list_books(available_only=available_only, author_id=author_id, genre=genre)
        return [BookModel(**b.to_dict()) for b in books]

    @app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
    def add_book(payload: BookCreateModel, lib: Library = Depends(get_library)):
        book_id = lib.add_book(payload.title, payload.author_id, payload.genre)
        return BookModel(**lib.get_book(book_id).to_dict())

    @app.get("/books/{book_id}", response_model=BookModel)
    def get_book(book_id: int, lib: Library = Depends(get_library)):
        return BookModel(**lib.get_book(book_id).to_dict())

    @app.patch("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
    def update_book(book_id: int, update: UpdateBookModel, lib: Library = Depends(get_library)):
        if update.title is None and update.author_id is None and update.genre is None:
            raise HTTPException(status_code=400, detail="Provide title, author_id and/or genre to update.")
        book = lib.update_book(book_id, title=update.title, author_id=update.author_id, genre=update.genre)
        return BookModel(**book.to_dict())

    @app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
    def delete_book(book_id: int, lib: Library = Depends(get_library)):
        lib.delete_book(book_id)
        return {"message": "Book deleted."}

    # --- Lending ---
    @app.post("/books/{book_id}/borrow", response_model=LoanModel, status_code=201,
              dependencies=[Depends(get_api_key)])
    def borrow_book(book_id: int, payload: BorrowRequestModel, lib: Library = Depends(get_library)):
        loan_id = lib.borrow_book(book_id, payload.borrower_id, payload.date or _today())
        return LoanModel(**lib.get_loan(loan_id).to_dict())

    @app.post("/books/{book_id}/return", response_model=LoanModel, dependencies=[Depends(get_api_key)])
    def return_book(book_id: int, payload: Optional[ReturnRequestModel] = None,
                    lib: Library = Depends(get_library)):
        return_date = payload.date if payload and payload.date else _today()
        return LoanModel(**lib.return_book(book_id, return_date).to_dict())

    @app.get("/books/{book_id}/loans", response_model=List[LoanModel])
    def book_loans(book_id: int, lib: Library = Depends(get_library)):
        lib.get_book(book_id)
        return [LoanModel(**l.to_dict()) for l in lib.list_loan_history(book_id=book_id)]

    @app.get("/loans/open", response_model=List[LoanModel])
    def open_loans(lib: Library = Depends(get_library)):
        return [LoanModel(**l.to_dict()) for l in lib.list_open_loans()]

    # --- Borrowers ---
    @app.get("/borrowers", response_model=List[BorrowerModel])
    def list_borrowers(lib: Library = Depends(get_library)):
        return [BorrowerModel(**b.to_dict()) for b in lib.list_borrowers()]

    @app.post("/borrowers", response_model=BorrowerModel, status_code=201, dependencies=[Depends(get_api_key)])
    def add_borrower(payload: BorrowerCreateModel, lib: Library = Depends(get_library)):
        borrower_id = lib.add_borrower(payload.name, payload.email)
        return BorrowerModel(**lib.get_borrower(borrower_id).to_dict())

    @app.get("/borrowers/{borrower_id}", response_model=BorrowerModel)
    def get_borrower(borrower_id: int, lib: Library = Depends(get_library)):
        return BorrowerModel(**lib.get_borrower(borrower_id).to_dict())

    @app.delete("/borrowers/{borrower_id}", dependencies=[Depends(get_api_key)])
    def delete_borrower(borrower_id: int, lib: Library = Depends(get_library)):
        lib.delete_borrower(borrower_id)
        return {"message": "Borrower deleted."}

    @app.get("/borrowers/{borrower_id}/loans", response_model=List[LoanModel])
    def borrower_loans(borrower_id: int, open_only: bool = Query(False), lib: Library = Depends(get_library)):
        lib.get_borrower(borrower_id)
        loans = lib.list_loan_history(borrower_id=borrower_id, open_only=open_only)
        return [LoanModel(**l.to_dict()) for l in loans]

    return app


app = create_app()
