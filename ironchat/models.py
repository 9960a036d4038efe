"""
DATA MODELS MODULE
==================

Pydantic models for the chat request body and for memory records. The request
body keeps the camelCase field names the mobile client sends (conversationHistory,
includeScriptureReferences, ...) through aliases; Python code uses snake_case.

MODELS:
  ChatMessage    - One prior turn sent by the client (role + content).
  Preferences    - Response length, scripture citations, clarifying questions.
  UserProfile    - Optional name and free-text "about me".
  IntakeProfile  - Survey snapshot: relationship, children, career, struggles.
  ChatRequest    - Body of POST /chat.
  MemoryRecord   - A durable fact about the user, read from or written to the context store.

Optional inputs are lenient: an unknown response length falls back to "balanced",
only an explicit false disables a policy flag, blank strings count as absent, and a
malformed preferences or profile object is dropped (its prompt section goes with it)
rather than failing the request.
"""

import logging
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from config import DEFAULT_MEMORY_CONFIDENCE, DEFAULT_RESPONSE_LENGTH, RESPONSE_LENGTH_MAX_TOKENS

logger = logging.getLogger("IronChat")

# Kinds of memory the extraction pipeline may store.
MEMORY_TYPES = (
    "life_event",
    "relationship",
    "struggle",
    "preference",
    "achievement",
    "belief",
    "context",
)


class _ClientModel(BaseModel):
    """Accept both the client's camelCase aliases and snake_case names; ignore unknown keys."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ==============================================================================
# REQUEST MODELS
# ==============================================================================

class ChatMessage(_ClientModel):
    """A single prior message in the conversation. Order defines chronology."""
    role: Literal["user", "assistant"]
    content: str


class Preferences(_ClientModel):
    response_length: str = Field(DEFAULT_RESPONSE_LENGTH, alias="responseLength")
    include_scripture_references: bool = Field(True, alias="includeScriptureReferences")
    ask_clarifying_questions: bool = Field(True, alias="askClarifyingQuestions")

    @field_validator("response_length", mode="before")
    @classmethod
    def _known_length(cls, value):
        # Unknown or missing tiers behave like the default instead of rejecting the request.
        if value in RESPONSE_LENGTH_MAX_TOKENS:
            return value
        return DEFAULT_RESPONSE_LENGTH

    @field_validator("include_scripture_references", "ask_clarifying_questions", mode="before")
    @classmethod
    def _on_unless_false(cls, value):
        # Only an explicit false turns a policy section off.
        return value is not False


class UserProfile(_ClientModel):
    name: Optional[str] = None
    about: Optional[str] = None

    @field_validator("name", "about", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class IntakeProfile(_ClientModel):
    relationship_status: Optional[str] = None
    has_children: Optional[bool] = None
    career_stage: Optional[str] = None
    spiritual_struggles: List[str] = Field(default_factory=list)

    @field_validator("spiritual_struggles", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return [] if value is None else value

    def has_context(self) -> bool:
        """True when at least one survey answer is present."""
        return bool(
            self.relationship_status
            or self.has_children is not None
            or self.career_stage
            or self.spiritual_struggles
        )


# Optional context objects, by every key the client may send them under.
_CONTEXT_FIELDS = (
    ("preferences", Preferences),
    ("userProfile", UserProfile),
    ("user_profile", UserProfile),
    ("intakeProfile", IntakeProfile),
    ("intake_profile", IntakeProfile),
)


class ChatRequest(_ClientModel):
    """
    Request body for POST /chat.

    - question: Required and non-blank; checked by the chat service so the caller
      gets "Question is required" rather than a schema error.
    - conversation_history: Prior turns, oldest first, sent upstream unchanged.
    - conversation_id: Recorded on memories extracted from this exchange.
    """
    question: str = ""
    conversation_history: List[ChatMessage] = Field(default_factory=list, alias="conversationHistory")
    preferences: Optional[Preferences] = None
    user_profile: Optional[UserProfile] = Field(None, alias="userProfile")
    intake_profile: Optional[IntakeProfile] = Field(None, alias="intakeProfile")
    conversation_id: Optional[str] = Field(None, alias="conversationId")

    @model_validator(mode="before")
    @classmethod
    def _drop_unusable_context(cls, data):
        """A malformed preferences or profile object is dropped on its own; the request goes on."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key, model in _CONTEXT_FIELDS:
            value = data.get(key)
            if value is None or isinstance(value, model):
                continue
            try:
                data[key] = model.model_validate(value)
            except ValidationError as e:
                logger.warning("Ignoring malformed %s: %s", key, e.errors(include_url=False))
                data[key] = None
        return data

    @field_validator("question", mode="before")
    @classmethod
    def _none_is_blank(cls, value):
        return "" if value is None else value

    @field_validator("conversation_history", mode="before")
    @classmethod
    def _none_is_no_history(cls, value):
        return [] if value is None else value


# ==============================================================================
# MEMORY MODELS
# ==============================================================================

class MemoryRecord(BaseModel):
    """
    A fact about the user. Records are never edited after insert: a fact that
    supersedes an older one is inserted as a new record.
    """
    memory_type: str
    content: str
    confidence: float = DEFAULT_MEMORY_CONFIDENCE
    source_conversation_id: Optional[str] = None
    is_active: bool = True
