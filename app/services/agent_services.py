# app/services/agent_services.py
import os
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional

from crewai import Agent, Task, Crew, LLM
from pydantic import BaseModel, ValidationError

from app.schemas import (
    Discrepancy,
    SpreadsheetCell,
    SpreadsheetAnalysis,
    SopAnalysis,
    Severity,
)

logger = logging.getLogger(__name__)

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
model_name = os.getenv("LLM_MODEL", "groq/llama-3.3-70b-versatile")

# (role, backstory, prompt, expected_output) -> raw model text
Runner = Callable[[str, str, str, str], Awaitable[str]]

PROTOCOL_ERROR = "Error generating protocols. Please check your API key."
PROTOCOL_EMPTY = "No protocols generated."
RISK_ERROR = "Error analyzing risk."
RISK_EMPTY = "Unable to analyze risk."
SOP_ERROR_REPORT = "AI Service Error during SOP analysis."


class SopRulesResponse(BaseModel):
    status: Optional[str] = None
    report: Optional[str] = None
    rules: Optional[str] = None


class SpreadsheetResponse(BaseModel):
    discrepancies: List[Discrepancy] = []
    summary: Optional[str] = None


def clean_ai_json(model_output: str) -> Any:
    """
    Removes ```json fences and parses the cleaned string.
    Raises ValueError when nothing parseable is left.
    """
    if not model_output:
        raise ValueError("Empty model output")
    cleaned = (
        model_output.replace("```json", "")
                    .replace("```", "")
                    .strip()
    )
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        # models sometimes wrap the object in prose
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object in model output")
        return json.loads(cleaned[start:end + 1])


def parse_discrepancies(raw_items: Any) -> List[Discrepancy]:
    """Keep well-formed entries, drop the rest. Unknown severities count as High."""
    if not isinstance(raw_items, list):
        return []
    parsed = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        item = dict(item)
        if item.get("severity") not in {s.value for s in Severity}:
            item["severity"] = Severity.HIGH.value
        try:
            parsed.append(Discrepancy.model_validate(item))
        except ValidationError:
            logger.warning("Dropping malformed discrepancy from analyzer: %s", item)
    return parsed


async def crew_runner(role: str, backstory: str, prompt: str, expected_output: str) -> str:
    llm = LLM(model=model_name, temperature=0.1, api_key=GROQ_API_KEY)
    agent = Agent(
        role=role,
        goal="Produce accurate computer system validation documentation",
        backstory=backstory,
        llm=llm,
        allow_delegation=False,
        verbose=False,
    )
    task = Task(description=prompt, expected_output=expected_output, agent=agent)
    crew = Crew(agents=[agent], tasks=[task], verbose=False)
    result = await crew.kickoff_async()
    return str(result).strip()


class CapabilityGateway:
    """
    Typed wrapper around the external text-generation service.

    Every method returns a well-formed value; failures of the service
    (network, timeout, malformed output) turn into the documented fallback.
    """

    def __init__(self, runner: Optional[Runner] = None):
        self.runner = runner or crew_runner

    async def _run(self, role: str, backstory: str, prompt: str, expected_output: str) -> str:
        return await self.runner(role, backstory, prompt, expected_output)

    async def generate_protocols(self, system_name: str, category: str, stage: str) -> str:
        prompt = f"""
You are a Senior Computer System Validation (CSV) Expert in the Pharmaceutical Industry adhering to GAMP 5 and FDA 21 CFR Part 11 guidelines.

I need a checklist of critical validation tests for a specific asset.

Asset Name: {system_name}
Asset Type: {category}
Validation Stage: {stage}

Context:
- If Water System: Focus on conductivity, TOC, flow rates, valve logic.
- If HVAC: Focus on differential pressure, HEPA filter integrity, temperature/humidity control.
- If HPLC/TOC (Lab): Focus on software security, audit trails, data integrity, calculation verification.
- If Monitoring (Fridge): Focus on sensor accuracy, alarm thresholds, data logging gaps.
- If GAMP 5 Software: Focus on calculation verification, access control, audit trail, electronic signature.

Please provide a structured list of 5-7 specific tests with acceptance criteria.
Format the output as a clean Markdown list.
"""
        try:
            text = await self._run(
                "CSV Protocol Author",
                "You write IQ/OQ/PQ test protocols for regulated pharmaceutical assets.",
                prompt,
                "Markdown checklist",
            )
        except Exception:
            logger.exception("Protocol generation failed for %s", system_name)
            return PROTOCOL_ERROR
        return text or PROTOCOL_EMPTY

    async def analyze_risk(self, description: str, category: str) -> str:
        prompt = f"""
Perform a simplified FMEA (Failure Mode and Effects Analysis) risk assessment for the following pharma system.

System Type: {category}
Description: {description}

Identify:
1. Potential Failure Modes (Data Integrity, Patient Safety, Product Quality).
2. Impact Assessment (High/Medium/Low).
3. Recommended Mitigation Strategies.

Keep the response concise and formatted as Markdown.
"""
        try:
            text = await self._run(
                "Risk Assessor",
                "You are a GAMP 5 risk management specialist.",
                prompt,
                "Markdown risk assessment",
            )
        except Exception:
            logger.exception("Risk analysis failed")
            return RISK_ERROR
        return text or RISK_EMPTY

    async def extract_sop_rules(self, title: str, category: str, content: str) -> SopAnalysis:
        prompt = f"""
You are a Quality Assurance Assistant for Pharma CSV.

The following SOP is approved expert information. DO NOT CRITIQUE it for compliance.
Your goal is to EXTRACT the actionable Validation Rules, Acceptance Criteria, or Numeric Limits
so they can be applied later during spreadsheet validation.

SOP Title: {title}
Category: {category}
Content/Summary: "{content}"

Tasks:
1. Identify any numeric limits (e.g. "Conductivity < 1.3", "Temperature 20-25C").
2. Identify mandatory procedural checks (e.g. "Must have double signature").

Return ONLY JSON matching this schema:
{json.dumps(SopRulesResponse.model_json_schema())}
"""
        try:
            raw = await self._run(
                "SOP Rule Extractor",
                "You extract validation rules from pharmaceutical SOPs.",
                prompt,
                "JSON object with status, report and rules",
            )
            parsed = SopRulesResponse.model_validate(clean_ai_json(raw))
        except Exception:
            logger.exception("SOP rule extraction failed for %s", title)
            return SopAnalysis(status="Non-Compliant", report=SOP_ERROR_REPORT, rules="")
        # extraction, not critique: a successful call is always Compliant
        return SopAnalysis(
            status="Compliant",
            report=parsed.report or "Rules extracted successfully.",
            rules=parsed.rules or "No specific rules extracted.",
        )

    async def validate_spreadsheet(
        self, file_name: str, cells: List[SpreadsheetCell], sop_context: Optional[str] = None
    ) -> SpreadsheetAnalysis:
        cell_payload = [c.model_dump() for c in cells]
        rules = sop_context or "No specific SOP provided. Use standard GAMP 5 best practices (No hardcoding, data integrity)."
        prompt = f"""
You are a CSV GAMP 5 Validator specializing in Spreadsheet Validation and Data Integrity (ALCOA+ principles).
Analyze the following Excel formulas and their calculated values from "{file_name}".

ACTIVE SOP RULES:
{rules}

Flag discrepancies if they violate GAMP 5, ALCOA+, OR the SOP rules above. Look for:
1. Hardcoded values in formula cells (Violates 'Original').
2. Logic errors that yield incorrect values (Violates 'Accurate').
3. Broken chains of calculation.

Data to Analyze:
{json.dumps(cell_payload, default=str)}

Return ONLY JSON matching this schema:
{json.dumps(SpreadsheetResponse.model_json_schema())}
"""
        try:
            raw = await self._run(
                "Spreadsheet Validator",
                "You review spreadsheet formulas for GAMP 5 data integrity.",
                prompt,
                "JSON object with discrepancies and summary",
            )
            data = clean_ai_json(raw)
            if not isinstance(data, dict):
                raise ValueError("Analyzer response is not an object")
        except Exception:
            logger.exception("Spreadsheet validation failed for %s", file_name)
            return spreadsheet_fallback(file_name)
        discrepancies = parse_discrepancies(data.get("discrepancies"))
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            summary = "Analysis complete."
        return SpreadsheetAnalysis(
            file_name=file_name,
            total_formulas=len(cells),
            discrepancies=discrepancies,
            is_valid=len(discrepancies) == 0,
            summary=summary,
        )

    async def translate(self, text: str, target_language: str = "Persian (Farsi)") -> str:
        prompt = f"""
You are a professional Pharmaceutical Translator.
Translate the following Computer System Validation (CSV) protocol/checklist from English to {target_language}.
Keep technical terms (IQ, OQ, PQ, GAMP 5, User Requirements) in English or use their standard technical equivalents.
The tone should be formal and suitable for official documentation.

Text to translate:
{text}
"""
        try:
            translated = await self._run(
                "Pharmaceutical Translator",
                "You translate regulated validation documents.",
                prompt,
                "Translated text only",
            )
        except Exception:
            logger.exception("Translation failed")
            return text
        return translated or text


def spreadsheet_fallback(file_name: str) -> SpreadsheetAnalysis:
    return SpreadsheetAnalysis(
        file_name=file_name,
        total_formulas=0,
        discrepancies=[
            Discrepancy(
                address="System",
                formula="N/A",
                value="Error",
                reason="AI Analysis Failed",
                severity=Severity.HIGH,
            )
        ],
        is_valid=False,
        summary="Could not perform AI validation.",
    )


def get_gateway() -> CapabilityGateway:
    return CapabilityGateway()
