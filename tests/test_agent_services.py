import json

import pytest

from app.schemas import Severity, SpreadsheetCell
from app.services.agent_services import (
    PROTOCOL_EMPTY,
    PROTOCOL_ERROR,
    RISK_EMPTY,
    RISK_ERROR,
    SOP_ERROR_REPORT,
    CapabilityGateway,
    clean_ai_json,
    parse_discrepancies,
)


def gateway_returning(reply):
    async def runner(role, backstory, prompt, expected_output):
        if isinstance(reply, Exception):
            raise reply
        return reply
    return CapabilityGateway(runner)


CELLS = [SpreadsheetCell(address="B2", formula="=A1*2", value=4)]


def test_clean_ai_json_strips_fences_and_prose():
    assert clean_ai_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert clean_ai_json('Here you go: {"a": 2} hope it helps') == {"a": 2}
    with pytest.raises(ValueError):
        clean_ai_json("no json here")


def test_parse_discrepancies_drops_malformed_and_coerces_severity():
    parsed = parse_discrepancies([
        {"address": "B2", "formula": "=A1*2", "value": 4, "reason": "hardcoded", "severity": "Critical"},
        {"address": "C3"},
        "garbage",
        {"address": "D4", "formula": 5, "reason": "x", "severity": "Low", "suggestedFormula": "SUM(A1:A3)"},
    ])
    assert [d.address for d in parsed] == ["B2", "D4"]
    assert parsed[0].severity == Severity.HIGH
    assert parsed[1].formula == "5"
    assert parsed[1].suggested_formula == "SUM(A1:A3)"
    assert parse_discrepancies(None) == []


@pytest.mark.asyncio
async def test_protocol_fallbacks():
    assert await gateway_returning(RuntimeError("no key")).generate_protocols("WFI", "Water", "IQ") == PROTOCOL_ERROR
    assert await gateway_returning("").generate_protocols("WFI", "Water", "IQ") == PROTOCOL_EMPTY
    assert await gateway_returning("- test 1").generate_protocols("WFI", "Water", "IQ") == "- test 1"


@pytest.mark.asyncio
async def test_risk_fallbacks():
    assert await gateway_returning(TimeoutError()).analyze_risk("fridge", "Monitoring") == RISK_ERROR
    assert await gateway_returning("").analyze_risk("fridge", "Monitoring") == RISK_EMPTY


@pytest.mark.asyncio
async def test_sop_rules_success_is_always_compliant():
    reply = json.dumps({"status": "Non-Compliant", "report": "ok", "rules": "Conductivity < 1.3"})
    result = await gateway_returning(reply).extract_sop_rules("WFI SOP", "Spreadsheet Validation", "text")
    assert result.status == "Compliant"
    assert result.rules == "Conductivity < 1.3"

    defaults = await gateway_returning("{}").extract_sop_rules("WFI SOP", "Operation", "text")
    assert defaults.report == "Rules extracted successfully."
    assert defaults.rules == "No specific rules extracted."


@pytest.mark.asyncio
async def test_sop_rules_fallback():
    result = await gateway_returning("not json").extract_sop_rules("WFI SOP", "Operation", "text")
    assert (result.status, result.report, result.rules) == ("Non-Compliant", SOP_ERROR_REPORT, "")


@pytest.mark.asyncio
async def test_validate_spreadsheet_parses_response():
    reply = "```json\n" + json.dumps({
        "discrepancies": [{"address": "B2", "formula": "=A1*2", "value": 4, "reason": "hardcoded factor", "severity": "Medium"}],
        "summary": "One issue",
    }) + "\n```"
    result = await gateway_returning(reply).validate_spreadsheet("calc.xlsx", CELLS)
    assert result.total_formulas == 1
    assert result.is_valid is False
    assert result.summary == "One issue"
    assert result.discrepancies[0].severity == Severity.MEDIUM


@pytest.mark.asyncio
async def test_validate_spreadsheet_without_findings_is_valid():
    result = await gateway_returning('{"discrepancies": []}').validate_spreadsheet("calc.xlsx", CELLS)
    assert result.is_valid is True
    assert result.summary == "Analysis complete."


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [ConnectionError("down"), "oops", "[1, 2]"])
async def test_validate_spreadsheet_fallback(reply):
    result = await gateway_returning(reply).validate_spreadsheet("calc.xlsx", CELLS)
    assert result.total_formulas == 0
    assert result.is_valid is False
    assert result.summary == "Could not perform AI validation."
    (only,) = result.discrepancies
    assert (only.address, only.formula, only.value, only.reason, only.severity) == (
        "System", "N/A", "Error", "AI Analysis Failed", Severity.HIGH
    )


@pytest.mark.asyncio
async def test_translate_returns_original_on_failure():
    assert await gateway_returning(RuntimeError()).translate("IQ checklist") == "IQ checklist"
    assert await gateway_returning("").translate("IQ checklist") == "IQ checklist"
    assert await gateway_returning("ترجمه").translate("IQ checklist") == "ترجمه"
