"""Test-case execution: prompt x test case -> stored response + test run."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from promptlab.errors import PromptLabError, ValidationError
from promptlab.prompts.templates import substitute_variables
from promptlab.runner.gateway import GenerationGateway, GenerationRequest, validate_provider
from promptlab.storage.models import Prompt, TestCase, TestRun

logger = logging.getLogger(__name__)


@dataclass
class CaseResult:
    test_case_name: str
    output: str
    expected_output: Optional[str]
    passed: Optional[bool]          # None when no expected output is defined
    execution_time: Optional[float]
    response_id: Optional[str] = None


def evaluate_output(output: str, expected_output: Optional[str]) -> Optional[bool]:
    """Case-insensitive containment of the trimmed expected text in the output."""
    if not expected_output:
        return None
    return expected_output.strip().lower() in output.strip().lower()


def render_case(prompt: Prompt, test_case: TestCase) -> tuple[str, Optional[str]]:
    """Prompt content and system prompt with the case's variables filled in."""
    content = substitute_variables(prompt.content, test_case.variables)
    system_prompt = (
        substitute_variables(prompt.system_prompt, test_case.variables)
        if prompt.system_prompt else None
    )
    return content, system_prompt


async def _load_prompt(repository, prompt_id: str) -> Prompt:
    prompt = await asyncio.to_thread(repository.get_prompt, prompt_id)
    if prompt is None:
        raise ValidationError(f"Prompt not found: {prompt_id}")
    return prompt


async def run_single(
    gateway: GenerationGateway,
    prompt: Prompt,
    test_case: TestCase,
    provider: str,
    model: str,
) -> CaseResult:
    """Run one test case through the gateway's non-streaming path."""
    content, system_prompt = render_case(prompt, test_case)
    stored = await gateway.run(GenerationRequest(
        prompt_id=prompt.id,
        model=model,
        content=content,
        provider=provider,
        system_prompt=system_prompt,
    ))
    return CaseResult(
        test_case_name=test_case.name,
        output=stored.content,
        expected_output=test_case.expected_output,
        passed=evaluate_output(stored.content, test_case.expected_output),
        execution_time=stored.execution_time,
        response_id=stored.id,
    )


async def run_batch(
    gateway: GenerationGateway,
    repository,
    prompt_id: str,
    provider: str,
    model: str,
    on_result: Optional[Callable[[CaseResult], None]] = None,
) -> list[CaseResult]:
    """Run every test case of a prompt against one provider/model.

    A failing case is recorded with its error text and ``passed=False``;
    the remaining cases still run.

    Raises:
        ValidationError: Unknown provider or prompt, or no test cases
        CredentialMissingError: Cloud provider without a stored key
    """
    validate_provider(provider)
    prompt = await _load_prompt(repository, prompt_id)
    test_cases = await asyncio.to_thread(repository.list_test_cases, prompt_id)
    if not test_cases:
        raise ValidationError(f"No test cases found for prompt {prompt_id}")

    # Fail fast on a missing key instead of recording it once per case
    await gateway.resolve_credential(provider)

    results: list[CaseResult] = []
    for test_case in test_cases:
        try:
            result = await run_single(gateway, prompt, test_case, provider, model)
        except PromptLabError as e:
            logger.warning("Test case %r failed on %s/%s: %s", test_case.name, provider, model, e)
            result = CaseResult(
                test_case_name=test_case.name,
                output=f"Error: {e}",
                expected_output=test_case.expected_output,
                passed=False,
                execution_time=None,
            )

        await asyncio.to_thread(
            repository.create_test_run,
            test_case.id, model, result.output, result.passed, result.execution_time,
        )
        results.append(result)
        if on_result is not None:
            on_result(result)

    passed = sum(1 for r in results if r.passed)
    logger.info("Batch for prompt %s on %s/%s: %d/%d passed",
                prompt_id, provider, model, passed, len(results))
    return results


async def run_test_case(
    gateway: GenerationGateway,
    repository,
    test_case_id: str,
    provider: str,
    model: str,
) -> TestRun:
    """Run a single test case; unlike a batch, failures propagate."""
    test_case = await asyncio.to_thread(repository.get_test_case, test_case_id)
    if test_case is None:
        raise ValidationError(f"Test case not found: {test_case_id}")
    prompt = await _load_prompt(repository, test_case.prompt_id)

    result = await run_single(gateway, prompt, test_case, provider, model)
    return await asyncio.to_thread(
        repository.create_test_run,
        test_case.id, model, result.output, result.passed, result.execution_time,
    )
