"""Pydantic models for scraped institutional web pages."""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Category(str, Enum):
    ADMISSIONS = "ADMISSIONS"
    COURSES = "COURSES"
    TUITION = "TUITION"
    DEADLINES = "DEADLINES"
    POLICIES = "POLICIES"
    TECHNICAL = "TECHNICAL"
    GENERAL = "GENERAL"

    @classmethod
    def parse(cls, value: Union["Category", str, None]) -> Optional["Category"]:
        """Resolve a case-insensitive category name, or None if unrecognized."""
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class ScrapedPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_url: str
    title: str = Field(description="Document title, first h1, or 'Untitled Document'")
    extracted_text: str = Field(description="Normalized plain text, one block element per line")
    category: Category = Category.GENERAL
