"""
CLI tests using typer's CliRunner against a temp database.
"""

import pytest
from typer.testing import CliRunner

from conftest import ScriptedAdapter
from promptlab.cli import app
from promptlab.credentials import decrypt

runner = CliRunner()


@pytest.fixture
def adapter(monkeypatch):
    scripted = ScriptedAdapter()
    monkeypatch.setattr("promptlab.cli.create_adapter", lambda provider: scripted)
    return scripted


class TestInitAndKeys:
    def test_init(self, tmp_path):
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert "Database initialized" in result.stdout
        assert (tmp_path / "promptlab.db").exists()

    def test_add_key_is_encrypted_and_masked(self, repository):
        result = runner.invoke(app, ["add-key", "openai", "sk-secret-9876", "--label", "work"])
        assert result.exit_code == 0
        assert "9876" in result.stdout
        assert "sk-secret" not in result.stdout

        stored = repository.get_latest_api_key("openai")
        assert stored.label == "work"
        assert stored.encrypted_key != "sk-secret-9876"
        assert decrypt(stored.encrypted_key) == "sk-secret-9876"

    def test_add_key_unknown_provider(self, repository):
        result = runner.invoke(app, ["add-key", "gemini", "key"])
        assert result.exit_code == 1
        assert "Unknown provider" in result.stdout


class TestGenerate:
    def test_non_streaming(self, repository, prompt, adapter):
        result = runner.invoke(app, [
            "generate", prompt.id, "-m", "llama3", "--no-stream",
            "--var", "name=Ana", "--var", "persona=a pirate",
        ])
        assert result.exit_code == 0, result.stdout
        assert "Hello, world" in result.stdout
        assert "Saved response" in result.stdout
        assert adapter.requests[0].content == "Say hello to Ana"
        assert adapter.requests[0].system_prompt == "You are a pirate."
        assert len(repository.list_responses()) == 1

    def test_streaming(self, repository, prompt, adapter):
        result = runner.invoke(app, ["generate", prompt.id, "--model", "llama3"])
        assert result.exit_code == 0, result.stdout
        assert "Hello, world" in result.stdout
        assert "Saved response" in result.stdout
        assert len(repository.list_responses()) == 1

    def test_stream_error_exits_nonzero(self, repository, prompt, monkeypatch):
        monkeypatch.setattr("promptlab.cli.create_adapter", lambda provider: ScriptedAdapter(fail_at=1))
        result = runner.invoke(app, ["generate", prompt.id, "-m", "llama3"])
        assert result.exit_code == 1
        assert "upstream exploded" in result.stdout
        assert repository.list_responses() == []

    def test_missing_key(self, repository, prompt, adapter):
        result = runner.invoke(app, ["generate", prompt.id, "-p", "openai", "-m", "gpt-4o"])
        assert result.exit_code == 1
        assert "No OpenAI API key configured" in result.stdout
        assert adapter.requests == []

    def test_unknown_prompt(self, repository, adapter):
        result = runner.invoke(app, ["generate", "missing", "-m", "llama3"])
        assert result.exit_code == 1
        assert "Prompt not found" in result.stdout

    def test_bad_var(self, repository, prompt, adapter):
        result = runner.invoke(app, ["generate", prompt.id, "-m", "llama3", "--var", "novalue"])
        assert result.exit_code == 1
        assert "expected name=value" in result.stdout


class TestBatchAndBank:
    def test_load_prompts_then_batch(self, repository, tmp_path, adapter):
        bank = tmp_path / "bank.yaml"
        bank.write_text(
            "category: greetings\n"
            "prompts:\n"
            "  - title: Greet\n"
            "    prompt: Greet {{name}}\n"
            "    test_cases:\n"
            "      - name: ana\n"
            "        variables: {name: Ana}\n"
            "        expected_output: hello\n"
            "      - name: bo\n"
            "        variables: {name: Bo}\n"
            "        expected_output: farewell\n"
        )
        result = runner.invoke(app, ["load-prompts", str(bank)])
        assert result.exit_code == 0, result.stdout
        assert "Loaded 1 prompts" in result.stdout

        prompts = repository.list_prompts()
        assert [p.category for p in prompts] == ["greetings"]

        result = runner.invoke(app, ["batch-run", prompts[0].id, "-m", "llama3"])
        assert result.exit_code == 0, result.stdout
        assert "Passed 1/2" in result.stdout
        assert [r.content for r in adapter.requests] == ["Greet Ana", "Greet Bo"]

    def test_batch_without_cases(self, repository, prompt, adapter):
        result = runner.invoke(app, ["batch-run", prompt.id, "-m", "llama3"])
        assert result.exit_code == 1
        assert "No test cases" in result.stdout

    def test_load_prompts_invalid_bank(self, tmp_path, repository):
        bank = tmp_path / "bank.yaml"
        bank.write_text("title: not a bank\n")
        result = runner.invoke(app, ["load-prompts", str(bank)])
        assert result.exit_code == 1
        assert "Invalid prompt bank" in result.stdout


class TestInspection:
    def test_responses_empty(self, repository):
        result = runner.invoke(app, ["responses"])
        assert result.exit_code == 0
        assert "No responses found" in result.stdout

    def test_variables(self, repository, prompt):
        result = runner.invoke(app, ["variables", prompt.id])
        assert result.exit_code == 0
        assert result.stdout.split() == ["name", "persona"]

    def test_cost_estimate(self):
        result = runner.invoke(app, ["cost-estimate", "gpt-4o", "1000000", "0"])
        assert result.exit_code == 0
        assert "$2.500000" in result.stdout

    def test_cost_estimate_local_model(self):
        result = runner.invoke(app, ["cost-estimate", "llama3", "10", "10", "-p", "ollama"])
        assert result.exit_code == 1
        assert "No pricing for provider: ollama" in result.stdout
