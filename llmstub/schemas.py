"""Shape of the structured profile reply."""

from __future__ import annotations

from pydantic import BaseModel


class UserProfile(BaseModel):
    name: str
    age: int | float
    occupation: str
    personality: list[str]
    backstory: str
