from __future__ import annotations


class Book:
    """A single copy of a book in the catalog."""

    TABLE = "books"
    KIND = "book"
    FIELDS = ("title", "author_id", "genre", "is_borrowed")

    def __init__(self, title: str, author_id: int, genre: str = "", is_borrowed: bool = False,
                 id: int | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author_id = author_id
        self.genre = (genre or "").strip()
        self.is_borrowed = bool(is_borrowed)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        status = "borrowed" if self.is_borrowed else "available"
        return f"{self.title} [{self.genre or 'no genre'}] ({status})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author_id": self.author_id,
            "genre": self.genre,
            "is_borrowed": self.is_borrowed,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite stores booleans as 0/1
        return Book(
            id=data.get("id"),
            title=data["title"],
            author_id=data["author_id"],
            genre=data.get("genre") or "",
            is_borrowed=bool(data.get("is_borrowed", False)),
        )
