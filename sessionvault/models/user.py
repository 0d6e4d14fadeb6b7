from datetime import datetime
from sqlmodel import Field
from sessionvault.models.base import BaseTable


class User(BaseTable, table=True):
    __tablename__: str = "users" # type: ignore[assignment]

    email: str = Field(index=True, unique=True, nullable=False, max_length=255)
    password_hash: str = Field(nullable=False, max_length=255)
    active: bool = Field(default=True, nullable=False)
    email_verified_at: datetime | None = Field(default=None)
