from datetime import datetime
from enum import Enum

from beanie import Document, Indexed
from pydantic import Field


class Role(str, Enum):
    MANAGER = "manager"
    VERIFIER = "verifier"
    BUYER = "buyer"


class User(Document):
    """Authenticated principal. Identity issuance lives outside this service."""
    email: Indexed(str, unique=True)
    name: str = ""
    role: Role = Role.BUYER
    organization: str | None = None
    session_version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
