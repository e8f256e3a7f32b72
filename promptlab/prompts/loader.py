"""Load YAML prompt bank files into the workspace database."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class CaseDef:
    name: str
    variables: dict[str, str] = field(default_factory=dict)
    expected_output: Optional[str] = None


@dataclass
class PromptDef:
    title: str
    prompt: str
    system: Optional[str] = None
    category: Optional[str] = None
    test_cases: list[CaseDef] = field(default_factory=list)


def load_bank(filepath: Path) -> list[PromptDef]:
    """Parse one YAML bank file.

    Expected shape::

        category: summarization        # optional, applies to every prompt
        prompts:
          - title: Short summary
            system: You are terse.
            prompt: Summarise {{text}}
            test_cases:
              - name: weather
                variables: {text: "It rained all day."}
                expected_output: rain
    """
    with open(filepath, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict) or not isinstance(data.get("prompts"), list):
        raise ValueError(f"{filepath}: expected a mapping with a 'prompts' list")

    category = data.get("category")
    prompts = []
    for i, p in enumerate(data["prompts"]):
        if "title" not in p or "prompt" not in p:
            raise ValueError(f"{filepath}: prompt #{i + 1} needs 'title' and 'prompt'")
        prompts.append(PromptDef(
            title=p["title"],
            prompt=p["prompt"].strip(),
            system=p.get("system") or None,
            category=p.get("category", category),
            test_cases=[
                CaseDef(
                    name=c["name"],
                    variables={k: str(v) for k, v in (c.get("variables") or {}).items()},
                    expected_output=c.get("expected_output"),
                )
                for c in p.get("test_cases", [])
            ],
        ))
    return prompts


def import_bank(repository, filepath: Path) -> list[str]:
    """Create prompts and their test cases from a bank file. Returns prompt ids."""
    prompt_ids = []
    for p in load_bank(filepath):
        prompt = repository.create_prompt(
            title=p.title,
            content=p.prompt,
            system_prompt=p.system,
            category=p.category,
        )
        for c in p.test_cases:
            repository.create_test_case(
                prompt_id=prompt.id,
                name=c.name,
                variables=c.variables,
                expected_output=c.expected_output,
            )
        prompt_ids.append(prompt.id)
    return prompt_ids
