"""
Repository pattern for data access.

Every operation opens its own connection and commits a single statement,
so callers never hold a transaction across a streamed generation.
"""

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from promptlab.config import RESPONSE_SOURCES, get_db_path
from .db import get_connection
from .models import (
    Prompt, PromptFilters, StoredCredential, StoredResponse, TestCase, TestRun,
)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS prompts (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        system_prompt TEXT,
        category TEXT,
        notes TEXT,
        is_favorite INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS responses (
        id TEXT PRIMARY KEY,
        prompt_id TEXT NOT NULL REFERENCES prompts(id) ON DELETE CASCADE,
        model_name TEXT NOT NULL,
        content TEXT NOT NULL,
        token_count INTEGER,
        execution_time REAL,
        cost_estimate REAL,
        source TEXT NOT NULL DEFAULT 'manual',
        rating INTEGER,
        notes TEXT,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS api_keys (
        id TEXT PRIMARY KEY,
        provider TEXT NOT NULL,
        label TEXT,
        encrypted_key TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS test_cases (
        id TEXT PRIMARY KEY,
        prompt_id TEXT NOT NULL REFERENCES prompts(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        variables TEXT NOT NULL DEFAULT '{}',
        expected_output TEXT,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS test_runs (
        id TEXT PRIMARY KEY,
        test_case_id TEXT NOT NULL REFERENCES test_cases(id) ON DELETE CASCADE,
        model_name TEXT NOT NULL,
        output TEXT NOT NULL,
        passed INTEGER,
        execution_time REAL,
        created_at TEXT NOT NULL
    );
"""

_PROMPT_COLUMNS = (
    "id, title, content, system_prompt, category, notes, is_favorite, created_at, updated_at"
)
_RESPONSE_COLUMNS = (
    "id, prompt_id, model_name, content, token_count, execution_time, "
    "cost_estimate, source, rating, notes, created_at"
)


def initialize_schema(db_path: Optional[str] = None) -> None:
    """Create all tables if they don't exist.

    Args:
        db_path: Path to SQLite database file (defaults to PROMPTLAB_DB)
    """
    conn = get_connection(db_path or get_db_path())
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now().isoformat()


def _optional_bool(value: Optional[int]) -> Optional[bool]:
    return None if value is None else bool(value)


def _row_to_prompt(row) -> Prompt:
    return Prompt(
        id=row[0],
        title=row[1],
        content=row[2],
        system_prompt=row[3],
        category=row[4],
        notes=row[5],
        is_favorite=bool(row[6]),
        created_at=datetime.fromisoformat(row[7]),
        updated_at=datetime.fromisoformat(row[8]),
    )


def _row_to_response(row) -> StoredResponse:
    return StoredResponse(
        id=row[0],
        prompt_id=row[1],
        model_name=row[2],
        content=row[3],
        token_count=row[4],
        execution_time=row[5],
        cost_estimate=row[6],
        source=row[7],
        rating=row[8],
        notes=row[9],
        created_at=datetime.fromisoformat(row[10]),
    )


def _row_to_test_case(row) -> TestCase:
    return TestCase(
        id=row[0],
        prompt_id=row[1],
        name=row[2],
        variables=json.loads(row[3] or "{}"),
        expected_output=row[4],
        created_at=datetime.fromisoformat(row[5]),
    )


def build_prompt_query(filters: PromptFilters) -> Tuple[str, List[Any]]:
    """Translate prompt filters into a parameterised SELECT."""
    query = f"SELECT {_PROMPT_COLUMNS} FROM prompts"
    conditions: List[str] = []
    params: List[Any] = []

    if filters.search:
        conditions.append("(title LIKE ? OR content LIKE ?)")
        pattern = f"%{filters.search}%"
        params.extend([pattern, pattern])
    if filters.category:
        conditions.append("category = ?")
        params.append(filters.category)
    if filters.favorite is not None:
        conditions.append("is_favorite = ?")
        params.append(1 if filters.favorite else 0)

    if conditions:
        query += " WHERE " + " AND ".join(conditions)

    query += " ORDER BY updated_at DESC, rowid DESC LIMIT ? OFFSET ?"
    params.extend([filters.limit, filters.offset])
    return query, params


class Repository:
    """Create/read/update access to prompts, responses, keys, and test cases."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_db_path()

    def _execute_write(self, sql: str, params: tuple) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def _fetch_all(self, sql: str, params: list) -> list:
        conn = get_connection(self.db_path)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def _fetch_one(self, sql: str, params: list):
        rows = self._fetch_all(sql, params)
        return rows[0] if rows else None

    # Prompts

    def create_prompt(
        self,
        title: str,
        content: str,
        system_prompt: Optional[str] = None,
        category: Optional[str] = None,
        notes: Optional[str] = None,
        is_favorite: bool = False,
    ) -> Prompt:
        now = _now()
        prompt_id = _new_id()
        self._execute_write(
            f"INSERT INTO prompts ({_PROMPT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (prompt_id, title, content, system_prompt, category, notes,
             1 if is_favorite else 0, now, now),
        )
        return self.get_prompt(prompt_id)

    def get_prompt(self, prompt_id: str) -> Optional[Prompt]:
        row = self._fetch_one(
            f"SELECT {_PROMPT_COLUMNS} FROM prompts WHERE id = ?", [prompt_id]
        )
        return _row_to_prompt(row) if row else None

    def list_prompts(self, filters: Optional[PromptFilters] = None) -> List[Prompt]:
        query, params = build_prompt_query(filters or PromptFilters())
        return [_row_to_prompt(r) for r in self._fetch_all(query, params)]

    # Responses

    def create_response(self, fields: Dict[str, Any]) -> StoredResponse:
        """Insert one response record.

        Args:
            fields: prompt_id, model_name, content (required); token_count,
                execution_time, cost_estimate, source, rating, notes (optional)

        Raises:
            ValueError: If source or rating is out of range
            sqlite3.Error: On any database failure
        """
        source = fields.get("source") or "manual"
        if source not in RESPONSE_SOURCES:
            raise ValueError(f"Unknown response source: {source}")
        rating = fields.get("rating")
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")

        response_id = _new_id()
        self._execute_write(
            f"INSERT INTO responses ({_RESPONSE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                response_id,
                fields["prompt_id"],
                fields["model_name"],
                fields["content"],
                fields.get("token_count"),
                fields.get("execution_time"),
                fields.get("cost_estimate"),
                source,
                rating,
                fields.get("notes"),
                _now(),
            ),
        )
        return self.get_response(response_id)

    def get_response(self, response_id: str) -> Optional[StoredResponse]:
        row = self._fetch_one(
            f"SELECT {_RESPONSE_COLUMNS} FROM responses WHERE id = ?", [response_id]
        )
        return _row_to_response(row) if row else None

    def list_responses(
        self,
        prompt_id: Optional[str] = None,
        model_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[StoredResponse]:
        """Newest first; model_name matches as a substring."""
        query = f"SELECT {_RESPONSE_COLUMNS} FROM responses"
        conditions = []
        params: List[Any] = []
        if prompt_id:
            conditions.append("prompt_id = ?")
            params.append(prompt_id)
        if model_name:
            conditions.append("model_name LIKE ?")
            params.append(f"%{model_name}%")
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        return [_row_to_response(r) for r in self._fetch_all(query, params)]

    def update_response(
        self,
        response_id: str,
        rating: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Optional[StoredResponse]:
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        if rating is not None:
            self._execute_write(
                "UPDATE responses SET rating = ? WHERE id = ?", (rating, response_id)
            )
        if notes is not None:
            self._execute_write(
                "UPDATE responses SET notes = ? WHERE id = ?", (notes, response_id)
            )
        return self.get_response(response_id)

    # API keys

    def create_api_key(
        self, provider: str, encrypted_key: str, label: Optional[str] = None
    ) -> StoredCredential:
        key_id = _new_id()
        created_at = _now()
        self._execute_write(
            "INSERT INTO api_keys (id, provider, label, encrypted_key, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (key_id, provider, label, encrypted_key, created_at),
        )
        return StoredCredential(
            id=key_id,
            provider=provider,
            label=label,
            encrypted_key=encrypted_key,
            created_at=datetime.fromisoformat(created_at),
        )

    def get_latest_api_key(self, provider: str) -> Optional[StoredCredential]:
        """Most recently created key for a provider, or None."""
        row = self._fetch_one(
            "SELECT id, provider, label, encrypted_key, created_at FROM api_keys "
            "WHERE provider = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
            [provider],
        )
        if row is None:
            return None
        return StoredCredential(
            id=row[0],
            provider=row[1],
            label=row[2],
            encrypted_key=row[3],
            created_at=datetime.fromisoformat(row[4]),
        )

    # Test cases

    def create_test_case(
        self,
        prompt_id: str,
        name: str,
        variables: Optional[Dict[str, str]] = None,
        expected_output: Optional[str] = None,
    ) -> TestCase:
        case_id = _new_id()
        self._execute_write(
            "INSERT INTO test_cases (id, prompt_id, name, variables, expected_output, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (case_id, prompt_id, name, json.dumps(variables or {}),
             expected_output or None, _now()),
        )
        return self.get_test_case(case_id)

    def get_test_case(self, test_case_id: str) -> Optional[TestCase]:
        row = self._fetch_one(
            "SELECT id, prompt_id, name, variables, expected_output, created_at "
            "FROM test_cases WHERE id = ?",
            [test_case_id],
        )
        return _row_to_test_case(row) if row else None

    def list_test_cases(self, prompt_id: str) -> List[TestCase]:
        """Test cases for a prompt in creation order."""
        rows = self._fetch_all(
            "SELECT id, prompt_id, name, variables, expected_output, created_at "
            "FROM test_cases WHERE prompt_id = ? ORDER BY created_at ASC, rowid ASC",
            [prompt_id],
        )
        return [_row_to_test_case(r) for r in rows]

    def create_test_run(
        self,
        test_case_id: str,
        model_name: str,
        output: str,
        passed: Optional[bool],
        execution_time: Optional[float] = None,
    ) -> TestRun:
        run_id = _new_id()
        created_at = _now()
        self._execute_write(
            "INSERT INTO test_runs (id, test_case_id, model_name, output, passed, "
            "execution_time, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (run_id, test_case_id, model_name, output,
             None if passed is None else int(passed), execution_time, created_at),
        )
        return TestRun(
            id=run_id,
            test_case_id=test_case_id,
            model_name=model_name,
            output=output,
            passed=passed,
            execution_time=execution_time,
            created_at=datetime.fromisoformat(created_at),
        )

    def list_test_runs(self, test_case_id: str) -> List[TestRun]:
        rows = self._fetch_all(
            "SELECT id, test_case_id, model_name, output, passed, execution_time, created_at "
            "FROM test_runs WHERE test_case_id = ? ORDER BY created_at DESC, rowid DESC",
            [test_case_id],
        )
        return [
            TestRun(
                id=r[0],
                test_case_id=r[1],
                model_name=r[2],
                output=r[3],
                passed=_optional_bool(r[4]),
                execution_time=r[5],
                created_at=datetime.fromisoformat(r[6]),
            )
            for r in rows
        ]
