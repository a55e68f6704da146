from __future__ import annotations


class Author:
    TABLE = "authors"
    KIND = "author"
    FIELDS = ("name",)

    def __init__(self, name: str, id: int | None = None) -> None:
        self.id = id
        self.name = name.strip()

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return self.name

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    @staticmethod
    def from_dict(data: dict) -> "Author":
        return Author(id=data.get("id"), name=data["name"])
