"""
Unit tests for the sqlite repository.
"""

import sqlite3

import pytest

from promptlab.storage.models import PromptFilters
from promptlab.storage.repository import Repository, build_prompt_query, initialize_schema


class TestSchema:
    def test_initialize_is_idempotent(self, tmp_path):
        db_path = str(tmp_path / "again.db")
        initialize_schema(db_path)
        initialize_schema(db_path)
        assert Repository(db_path).list_prompts() == []

    def test_uses_env_path_by_default(self, tmp_path):
        initialize_schema()
        assert (tmp_path / "promptlab.db").exists()


class TestPrompts:
    def test_create_and_get(self, repository):
        prompt = repository.create_prompt("Title", "Body {{x}}", system_prompt="sys", category="qa")
        loaded = repository.get_prompt(prompt.id)
        assert loaded == prompt
        assert loaded.system_prompt == "sys"
        assert loaded.is_favorite is False

    def test_get_missing(self, repository):
        assert repository.get_prompt("nope") is None

    def test_filters(self, repository):
        repository.create_prompt("Summarise", "text", category="summary")
        repository.create_prompt("Translate", "summary of words", category="i18n", is_favorite=True)
        repository.create_prompt("Other", "nothing", category="i18n")

        assert {p.title for p in repository.list_prompts(PromptFilters(search="summ"))} == {
            "Summarise", "Translate",
        }
        assert {p.title for p in repository.list_prompts(PromptFilters(category="i18n"))} == {
            "Translate", "Other",
        }
        assert [p.title for p in repository.list_prompts(PromptFilters(favorite=True))] == ["Translate"]
        assert len(repository.list_prompts(PromptFilters(limit=1))) == 1

    def test_build_query_without_filters(self):
        query, params = build_prompt_query(PromptFilters())
        assert "WHERE" not in query
        assert params == [50, 0]

    def test_build_query_combines_conditions(self):
        query, params = build_prompt_query(PromptFilters(search="x", favorite=False, limit=5, offset=10))
        assert "(title LIKE ? OR content LIKE ?) AND is_favorite = ?" in query
        assert params == ["%x%", "%x%", 0, 5, 10]


class TestResponses:
    def _fields(self, prompt_id, **overrides):
        fields = {
            "prompt_id": prompt_id,
            "model_name": "llama3",
            "content": "hi",
            "token_count": 10,
            "execution_time": 0.5,
            "cost_estimate": None,
            "source": "ollama",
        }
        fields.update(overrides)
        return fields

    def test_create_and_get(self, repository, prompt):
        stored = repository.create_response(self._fields(prompt.id))
        assert repository.get_response(stored.id) == stored
        assert stored.cost_estimate is None
        assert stored.source == "ollama"

    def test_source_defaults_to_manual(self, repository, prompt):
        fields = self._fields(prompt.id)
        del fields["source"]
        assert repository.create_response(fields).source == "manual"

    def test_rejects_unknown_source(self, repository, prompt):
        with pytest.raises(ValueError, match="Unknown response source"):
            repository.create_response(self._fields(prompt.id, source="gemini"))

    def test_rejects_bad_rating(self, repository, prompt):
        with pytest.raises(ValueError):
            repository.create_response(self._fields(prompt.id, rating=6))

    def test_unknown_prompt_violates_foreign_key(self, repository):
        with pytest.raises(sqlite3.IntegrityError):
            repository.create_response(self._fields("missing-prompt"))

    def test_list_newest_first_and_filters(self, repository, prompt):
        other = repository.create_prompt("Other", "x")
        first = repository.create_response(self._fields(prompt.id, model_name="llama3"))
        second = repository.create_response(self._fields(prompt.id, model_name="gpt-4o", source="openai"))
        repository.create_response(self._fields(other.id))

        assert [r.id for r in repository.list_responses(prompt_id=prompt.id)] == [second.id, first.id]
        assert [r.id for r in repository.list_responses(model_name="gpt")] == [second.id]
        assert len(repository.list_responses(limit=2)) == 2

    def test_update_rating_and_notes(self, repository, prompt):
        stored = repository.create_response(self._fields(prompt.id))
        updated = repository.update_response(stored.id, rating=4, notes="good")
        assert updated.rating == 4
        assert updated.notes == "good"
        with pytest.raises(ValueError):
            repository.update_response(stored.id, rating=0)


class TestTestCases:
    def test_cases_in_creation_order(self, repository, prompt):
        names = ["a", "b", "c"]
        for name in names:
            repository.create_test_case(prompt.id, name, variables={"name": name})
        cases = repository.list_test_cases(prompt.id)
        assert [c.name for c in cases] == names
        assert cases[0].variables == {"name": "a"}
        assert cases[0].expected_output is None

    def test_runs_record_tristate_passed(self, repository, prompt):
        case = repository.create_test_case(prompt.id, "a", expected_output="hi")
        repository.create_test_run(case.id, "llama3", "out", None)
        repository.create_test_run(case.id, "llama3", "out", False, 1.0)
        repository.create_test_run(case.id, "llama3", "out", True, 2.0)
        runs = repository.list_test_runs(case.id)
        assert [r.passed for r in runs] == [True, False, None]
