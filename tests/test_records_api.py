import io
import json
import os

from fastapi import Depends
from openpyxl import load_workbook

from app.auth import get_session
from app.deps import get_store
from app.main import app
from app.services.record_store import RecordStore, StoreError
from app.services.storage import STORAGE_BASE
from conftest import create_system, make_workbook

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def test_inspection_requires_date_and_inspector(client, admin_headers):
    sid = create_system(client, admin_headers)["id"]
    resp = client.post(f"/systems/{sid}/inspections/", json={"notes": "no header"}, headers=admin_headers)
    assert resp.status_code == 422
    assert set(resp.json()["detail"]["fields"]) == {"date", "inspector_name"}


def test_inspection_parameters_validated(client, admin_headers):
    sid = create_system(client, admin_headers)["id"]
    resp = client.post(
        f"/systems/{sid}/inspections/",
        json={"date": "2024-05-01", "inspector_name": "QA", "parameters": {"conductivity": "high"}},
        headers=admin_headers,
    )
    assert resp.status_code == 422
    assert "conductivity" in resp.json()["detail"]["fields"]


def test_inspection_history_and_export(client, admin_headers):
    sid = create_system(client, admin_headers, name="WFI-7")["id"]
    for day, cond in (("2024-05-01", "1.1"), ("2024-06-01", "0.9")):
        resp = client.post(
            f"/systems/{sid}/inspections/",
            json={"date": day, "inspector_name": "QA Lead", "parameters": {"conductivity": cond},
                  "signature": "data:image/png;base64,AAAA"},
            headers=admin_headers,
        )
        assert resp.status_code == 200, resp.text

    listed = client.get(f"/systems/{sid}/inspections/", headers=admin_headers).json()
    assert [r["date"] for r in listed] == ["2024-06-01", "2024-05-01"]
    window = client.get(f"/systems/{sid}/inspections/", params={"start": "2024-05-15"}, headers=admin_headers).json()
    assert [r["date"] for r in window] == ["2024-06-01"]

    export = client.get(f"/systems/{sid}/inspections/export", headers=admin_headers)
    assert export.status_code == 200
    assert export.headers["content-type"] == XLSX
    assert "WFI-7_History.xlsx" in export.headers["content-disposition"]
    ws = load_workbook(io.BytesIO(export.content)).active
    assert ws["A2"].value == "2024-06-01"
    assert ws["D1"].value == "conductivity"


def test_inspection_submit_clears_draft(client, admin_headers):
    sid = create_system(client, admin_headers)["id"]
    client.put("/drafts/inspection_form", json={"inspector_name": "QA"}, headers=admin_headers)
    client.post(
        f"/systems/{sid}/inspections/",
        json={"date": "2024-05-01", "inspector_name": "QA"},
        headers=admin_headers,
    )
    draft = client.get("/drafts/inspection_form", headers=admin_headers).json()
    assert draft["data"] is None
    assert draft["state"] == "idle"


def test_draft_round_trip(client, admin_headers):
    put = client.put("/drafts/sop_form", json={"title": "Cleaning"}, headers=admin_headers).json()
    assert put["state"] == "editing"
    got = client.get("/drafts/sop_form", headers=admin_headers).json()
    assert got["data"] == {"title": "Cleaning"}
    cleared = client.delete("/drafts/sop_form", headers=admin_headers).json()
    assert cleared["data"] is None


def _upload_sop(client, headers, sid, category="Spreadsheet Validation", title="Calc SOP"):
    return client.post(
        f"/systems/{sid}/sops",
        files={"file": ("sop.txt", b"Conductivity must stay below 1.3", "text/plain")},
        data={"title": title, "version": "2.0", "category": category},
        headers=headers,
    )


def test_sop_upload_extracts_rules(client, runner, admin_headers):
    runner.responses["SOP Rule Extractor"] = json.dumps({"report": "done", "rules": "Conductivity < 1.3"})
    sid = create_system(client, admin_headers)["id"]
    resp = _upload_sop(client, admin_headers, sid)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["ai_compliance_status"] == "Compliant"
    assert body["extracted_rules"] == "Conductivity < 1.3"
    assert body["uploaded_by"] == "System Administrator"
    assert "Conductivity must stay below 1.3" in runner.calls[0][1]
    assert [s["id"] for s in client.get(f"/systems/{sid}/sops", headers=admin_headers).json()] == [body["id"]]


def test_sop_delete_is_admin_only(client, admin_headers, operator_headers):
    sid = create_system(client, admin_headers)["id"]
    sop_id = _upload_sop(client, operator_headers, sid).json()["id"]
    assert client.delete(f"/sops/{sop_id}", headers=operator_headers).status_code == 403
    assert client.delete(f"/sops/{sop_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/systems/{sid}/sops", headers=admin_headers).json() == []
    assert client.delete(f"/sops/{sop_id}", headers=admin_headers).status_code == 404


def test_excel_upload_and_corrected_download(client, runner, admin_headers):
    runner.responses["SOP Rule Extractor"] = json.dumps({"rules": "No hardcoded factors"})
    runner.responses["Spreadsheet Validator"] = json.dumps({
        "discrepancies": [
            {"address": "B2", "formula": "=A2*1.1", "value": None, "reason": "Hardcoded factor",
             "severity": "High", "suggestedFormula": "A2*$D$1"},
        ],
        "summary": "One hardcoded value",
    })
    sid = create_system(client, admin_headers)["id"]
    _upload_sop(client, admin_headers, sid)
    data = make_workbook([["Qty", "Total"], [10, "=A2*1.1"]])

    resp = client.post(f"/systems/{sid}/excel", files={"file": ("calc.xlsx", data, XLSX)}, headers=admin_headers)
    assert resp.status_code == 200, resp.text
    report = resp.json()
    assert report["total_formulas"] == 1
    assert report["is_valid"] is False
    assert report["referenced_sop_title"] == "Calc SOP"
    assert report["retention_date"] is not None
    assert report["expired"] is False
    assert report["discrepancies"][0]["suggestedFormula"] == "A2*$D$1"
    assert "No hardcoded factors" in runner.calls[-1][1]

    history = client.get(f"/systems/{sid}/excel", headers=admin_headers).json()
    assert [r["id"] for r in history] == [report["id"]]

    corrected = client.get(f"/excel/{report['id']}/corrected", headers=admin_headers)
    assert corrected.status_code == 200
    assert "Corrected_calc.xlsx" in corrected.headers["content-disposition"]
    ws = load_workbook(io.BytesIO(corrected.content)).active
    assert ws["B2"].value == "=A2*$D$1"
    assert "Hardcoded factor" in ws["B2"].comment.text


def test_excel_upload_gateway_failure_is_recorded(client, runner, admin_headers):
    runner.responses["Spreadsheet Validator"] = RuntimeError("service down")
    sid = create_system(client, admin_headers)["id"]
    data = make_workbook([[1, "=A1*2"]])
    report = client.post(f"/systems/{sid}/excel", files={"file": ("calc.xlsx", data, XLSX)}, headers=admin_headers).json()
    assert report["is_valid"] is False
    assert report["discrepancies"][0]["reason"] == "AI Analysis Failed"


def test_excel_rejects_bad_files(client, admin_headers):
    sid = create_system(client, admin_headers)["id"]
    legacy = client.post(f"/systems/{sid}/excel", files={"file": ("old.xls", b"\xd0\xcf", "application/vnd.ms-excel")},
                         headers=admin_headers)
    assert legacy.status_code == 400
    corrupt = client.post(f"/systems/{sid}/excel", files={"file": ("bad.xlsx", b"garbage", XLSX)}, headers=admin_headers)
    assert corrupt.status_code == 400
    assert client.get("/excel/999999/corrected", headers=admin_headers).status_code == 404


def test_second_trigger_while_running_is_rejected(client, admin_headers):
    sid = create_system(client, admin_headers)["id"]
    data = make_workbook([[1, "=A1*2"]])
    app.state.inflight._running.add(("excel", sid))
    try:
        resp = client.post(f"/systems/{sid}/excel", files={"file": ("calc.xlsx", data, XLSX)}, headers=admin_headers)
        assert resp.status_code == 409
        other = create_system(client, admin_headers)["id"]
        ok = client.post(f"/systems/{other}/excel", files={"file": ("calc.xlsx", data, XLSX)}, headers=admin_headers)
        assert ok.status_code == 200
    finally:
        app.state.inflight._running.discard(("excel", sid))


def test_agent_endpoints(client, runner, admin_headers):
    runner.responses["CSV Protocol Author"] = "- Verify conductivity alarm"
    sid = create_system(client, admin_headers)["id"]
    protocols = client.post(f"/agent/protocols/{sid}", headers=admin_headers).json()
    assert protocols["text"] == "- Verify conductivity alarm"

    risk = client.post(
        "/agent/risk-analysis",
        json={"description": "Stability fridge", "category": "Env. Monitoring (Fridge/Sensors)"},
        headers=admin_headers,
    ).json()
    assert risk["text"] == "Unable to analyze risk."

    runner.responses["Pharmaceutical Translator"] = RuntimeError("quota")
    translated = client.post("/agent/translate", json={"text": "IQ checklist"}, headers=admin_headers).json()
    assert translated["text"] == "IQ checklist"
    assert client.post("/agent/protocols/999999", headers=admin_headers).status_code == 404


class FailingReportStore(RecordStore):
    async def save_excel_report(self, report, uploaded_at=None):
        raise StoreError("Could not persist excel_reports")


async def failing_store(session=Depends(get_session)):
    return FailingReportStore(session)


def test_failed_report_save_leaves_no_stored_file(client, admin_headers):
    sid = create_system(client, admin_headers)["id"]
    data = make_workbook([[1, "=A1*2"]])
    app.dependency_overrides[get_store] = failing_store
    try:
        resp = client.post(f"/systems/{sid}/excel", files={"file": ("calc.xlsx", data, XLSX)}, headers=admin_headers)
    finally:
        app.dependency_overrides.pop(get_store, None)
    assert resp.status_code == 503
    assert os.listdir(os.path.join(STORAGE_BASE, "excel", str(sid))) == []
