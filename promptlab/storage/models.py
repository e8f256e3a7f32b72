"""
Data models for the storage layer.

Plain records returned by the repository; none of them hold a connection.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class Prompt:
    id: str
    title: str
    content: str
    system_prompt: Optional[str]
    category: Optional[str]
    notes: Optional[str]
    is_favorite: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class StoredResponse:
    """One persisted model output.

    Created exactly once per successful generation. ``token_count`` is
    input + output tokens; ``cost_estimate`` is None for local models.
    """
    id: str
    prompt_id: str
    model_name: str
    content: str
    token_count: Optional[int]
    execution_time: Optional[float]
    cost_estimate: Optional[float]
    source: str
    rating: Optional[int]
    notes: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class StoredCredential:
    """An encrypted provider API key. The newest one per provider wins."""
    id: str
    provider: str
    label: Optional[str]
    encrypted_key: str
    created_at: datetime


@dataclass(frozen=True)
class TestCase:
    id: str
    prompt_id: str
    name: str
    variables: Dict[str, str]
    expected_output: Optional[str]
    created_at: datetime

    __test__ = False  # not a pytest class


@dataclass(frozen=True)
class TestRun:
    id: str
    test_case_id: str
    model_name: str
    output: str
    passed: Optional[bool]
    execution_time: Optional[float]
    created_at: datetime

    __test__ = False


@dataclass(frozen=True)
class PromptFilters:
    """Query parameters for listing prompts."""
    search: Optional[str] = None
    category: Optional[str] = None
    favorite: Optional[bool] = None
    limit: int = 50
    offset: int = 0
