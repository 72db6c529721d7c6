from __future__ import annotations
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import List
from .common import Currency
from .invoice import DraftLineItem, LineItem

MAX_SUGGESTED_ITEMS = 5
MAX_NOTE_WORDS = 50


class AutofillRequest(BaseModel):
    client_id: str = Field(min_length=1)
    currency: Currency
    user_id: str = Field(min_length=1)
    existing_line_items: List[DraftLineItem] = Field(default_factory=list)


class AutofillResult(BaseModel):
    suggested_items: List[LineItem] = Field(
        min_length=1,
        max_length=MAX_SUGGESTED_ITEMS,
        validation_alias=AliasChoices("suggested_items", "suggestedItems"),
    )
    suggested_note: str = Field(validation_alias=AliasChoices("suggested_note", "suggestedNote"))

    @field_validator("suggested_note")
    @classmethod
    def _note_length(cls, v: str) -> str:
        if len(v.split()) > MAX_NOTE_WORDS:
            raise ValueError(f"note exceeds {MAX_NOTE_WORDS} words")
        return v.strip()
