"""Pydantic schemas for LLM responses and JSON-as-text storage columns."""

import math
from typing import Any, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import field_validator

from .models import DigestTheme, Sentiment

UNABLE_TO_SUMMARIZE = "Unable to generate summary"
DEFAULT_READ_TIME_MINUTES = 5
# Anything longer than a day is not a reading time
MAX_READ_TIME_MINUTES = 24 * 60


def _string_list(value: Any) -> List[str]:
    """Keep the non-empty scalar entries of a list, as strings."""
    if not isinstance(value, list):
        return []
    items = []
    for entry in value:
        if isinstance(entry, bool) or not isinstance(entry, (str, int, float)):
            continue
        text = str(entry).strip()
        if text:
            items.append(text)
    return items


class SummaryPayload(BaseModel):
    """Summary JSON as returned by a provider, coerced to safe values.

    Missing or unusable fields fall back to defaults instead of failing.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str = UNABLE_TO_SUMMARIZE
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    topics: List[str] = Field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    read_time_minutes: int = Field(
        DEFAULT_READ_TIME_MINUTES, alias="readTimeMinutes"
    )

    @field_validator("summary", mode="before")
    @classmethod
    def coerce_summary(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return UNABLE_TO_SUMMARIZE

    @field_validator("key_points", "topics", mode="before")
    @classmethod
    def coerce_string_list(cls, v: Any) -> List[str]:
        return _string_list(v)

    @field_validator("sentiment", mode="before")
    @classmethod
    def coerce_sentiment(cls, v: Any) -> Sentiment:
        if isinstance(v, str):
            try:
                return Sentiment(v.strip().lower())
            except ValueError:
                pass
        return Sentiment.NEUTRAL

    @field_validator("read_time_minutes", mode="before")
    @classmethod
    def coerce_read_time(cls, v: Any) -> int:
        if isinstance(v, bool):
            return DEFAULT_READ_TIME_MINUTES
        if isinstance(v, str):
            try:
                v = float(v.strip())
            except ValueError:
                return DEFAULT_READ_TIME_MINUTES
        if isinstance(v, float) and not math.isfinite(v):
            return DEFAULT_READ_TIME_MINUTES
        if isinstance(v, (int, float)) and 0 < v <= MAX_READ_TIME_MINUTES:
            return max(1, round(v))
        return DEFAULT_READ_TIME_MINUTES


class ThemeSchema(BaseModel):
    """One digest theme, in LLM (camelCase) or stored (snake_case) form."""

    model_config = ConfigDict(extra="ignore")

    theme: str = ""
    description: str = ""
    related_subjects: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "related_subjects", "relatedNewsletters", "relatedRecordSubjects"
        ),
    )

    @field_validator("theme", "description", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    @field_validator("related_subjects", mode="before")
    @classmethod
    def coerce_subjects(cls, v: Any) -> List[str]:
        return _string_list(v)

    def to_theme(self) -> DigestTheme:
        return DigestTheme(
            theme=self.theme,
            description=self.description,
            related_subjects=list(self.related_subjects),
        )


class DigestPayload(BaseModel):
    """Digest JSON as returned by a provider; malformed fields become empty."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    themes: List[ThemeSchema] = Field(default_factory=list)
    highlights: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list, alias="actionItems")

    @field_validator("themes", mode="before")
    @classmethod
    def coerce_themes(cls, v: Any) -> List[ThemeSchema]:
        if not isinstance(v, list):
            return []
        themes = []
        for entry in v:
            if not isinstance(entry, dict):
                continue
            theme = ThemeSchema.model_validate(entry)
            if theme.theme:
                themes.append(theme)
        return themes

    @field_validator("highlights", "action_items", mode="before")
    @classmethod
    def coerce_string_list(cls, v: Any) -> List[str]:
        return _string_list(v)


# Storage boundary: array columns are JSON text validated on the way in and out
_STRING_LIST = TypeAdapter(List[str])
_THEME_LIST = TypeAdapter(List[ThemeSchema])


def encode_string_list(values: List[str]) -> str:
    return _STRING_LIST.dump_json(_STRING_LIST.validate_python(list(values))).decode()


def decode_string_list(text: str) -> List[str]:
    """Decode a stored JSON array of strings.

    Raises:
        pydantic.ValidationError: If the stored text is not a string array
    """
    return _STRING_LIST.validate_json(text or "[]")


def encode_themes(themes: List[DigestTheme]) -> str:
    validated = _THEME_LIST.validate_python(
        [
            {
                "theme": t.theme,
                "description": t.description,
                "related_subjects": list(t.related_subjects),
            }
            for t in themes
        ]
    )
    return _THEME_LIST.dump_json(validated).decode()


def decode_themes(text: str) -> List[DigestTheme]:
    return [schema.to_theme() for schema in _THEME_LIST.validate_json(text or "[]")]
