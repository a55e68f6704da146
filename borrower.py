from __future__ import annotations


class Borrower:
    """Someone allowed to borrow books."""

    TABLE = "borrowers"
    KIND = "borrower"
    FIELDS = ("name", "email")

    def __init__(self, name: str, email: str, id: int | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip()

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} <{self.email}>"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}

    @staticmethod
    def from_dict(data: dict) -> "Borrower":
        return Borrower(id=data.get("id"), name=data["name"], email=data["email"])
