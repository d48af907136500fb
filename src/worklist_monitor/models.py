from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccountCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    username: str
    password: str = Field(repr=False)

    @field_validator("name", "username", "password")
    @classmethod
    def _require_non_empty(cls, value: str, info) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError(f"{info.field_name} must be provided")
        return value


class AggregatedResult(BaseModel):
    # Insertion order is the tracked-worklist order; history columns depend on it.
    worklists: dict[str, int]
    total: int
    unresolved: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class RunOutcome:
    account: str
    status: Literal["success", "failed"]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def exit_code(outcomes: Iterable[RunOutcome]) -> int:
    return 0 if all(o.ok for o in outcomes) else 1
