import pytest

from conftest import ScriptedProvider, make_output
from triage_relay.core import ProviderErrorKind, ProviderException, RepairFailedException
from triage_relay.triage.application import ValidationRepairService
from triage_relay.triage.domain import Priority, ProviderName, TriagePromptBuilder


async def test_valid_output_needs_no_repair(ticket):
    provider = ScriptedProvider(ProviderName.LOCAL)
    service = ValidationRepairService()

    result = await service.resolve(make_output(), ticket, provider)

    assert result.priority is Priority.HIGH
    assert provider.calls == []


async def test_one_repair_round_fixes_output(ticket):
    provider = ScriptedProvider(ProviderName.LOCAL, [make_output(priority="low")])
    service = ValidationRepairService()

    result = await service.resolve(make_output(priority="urgent"), ticket, provider)

    assert result.priority is Priority.LOW
    assert len(provider.calls) == 1
    repair_ticket, repair_prompt = provider.calls[0]
    assert repair_ticket is ticket
    assert repair_prompt.startswith(TriagePromptBuilder.get_system_prompt())
    assert "Field 'priority'" in repair_prompt


async def test_unexpected_draft_triggers_repair(ticket):
    provider = ScriptedProvider(ProviderName.LOCAL, [make_output(reply_needed=False, reply_draft=None)])

    result = await ValidationRepairService().resolve(
        make_output(reply_needed=False, reply_draft="Hi, thanks for writing in."),
        ticket,
        provider
    )

    assert result.reply_needed is False
    assert result.reply_draft is None
    assert "reply_draft must be null" in provider.calls[0][1]


async def test_repair_goes_to_the_same_provider_only_once(ticket):
    provider = ScriptedProvider(ProviderName.FALLBACK, [make_output(priority="urgent")])
    service = ValidationRepairService()

    with pytest.raises(RepairFailedException) as exc_info:
        await service.resolve(make_output(priority="urgent"), ticket, provider)

    assert len(provider.calls) == 1
    error = exc_info.value
    assert error.provider == "fallback"
    assert "priority" in error.description
    assert "urgent" in error.raw_snippet


async def test_zero_repair_attempts_fails_immediately(ticket):
    provider = ScriptedProvider(ProviderName.LOCAL)
    service = ValidationRepairService(max_repair_attempts=0)

    with pytest.raises(RepairFailedException):
        await service.resolve("not json", ticket, provider)

    assert provider.calls == []


async def test_provider_error_during_repair_is_repair_failure(ticket):
    provider = ScriptedProvider(
        ProviderName.LOCAL,
        [ProviderException("local", ProviderErrorKind.TIMEOUT, "no response within 9s")]
    )
    service = ValidationRepairService()

    with pytest.raises(RepairFailedException) as exc_info:
        await service.resolve("not json", ticket, provider)

    assert "repair call failed" in exc_info.value.description
    assert exc_info.value.raw_snippet == "not json"


async def test_raw_snippet_is_truncated(ticket):
    long_output = "x" * 2000
    provider = ScriptedProvider(ProviderName.LOCAL, [long_output])

    with pytest.raises(RepairFailedException) as exc_info:
        await ValidationRepairService().resolve(long_output, ticket, provider)

    assert len(exc_info.value.raw_snippet) == RepairFailedException.SNIPPET_LENGTH


def test_negative_repair_attempts_rejected():
    with pytest.raises(ValueError):
        ValidationRepairService(max_repair_attempts=-1)
