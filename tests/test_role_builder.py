from __future__ import annotations

import pytest

from bizbrain.app.logic.models import JDAnalysisResult, OrganizationProfile
from bizbrain.app.services.errors import AnalysisStreamError, IntakeValidationError, ServerError
from bizbrain.app.services.notices import Notice
from bizbrain.app.services.role_builder import (
    ANALYZE_PATH,
    AUTO_SAVE_FAILED,
    DOWNLOAD_PATH,
    ORG_DEFAULT,
    SAVE_PATH,
    SAVED_PATH,
    RoleBuilderController,
    SOPAttachment,
    analysis_title,
    analyze,
    build_analysis_request,
    load_saved_analysis,
    merge_tools,
    org_form_defaults,
    resolve_form_with_profile,
    validate_intake,
)
from conftest import FakeResponse, ndjson

PROFILE = OrganizationProfile.model_validate(
    {
        "businessName": "Acme Co",
        "primaryGoal": "Reduce churn",
        "toolStack": ["Slack", "HubSpot"],
        "defaultTimeZone": "America/New_York",
        "defaultWeeklyHours": "30",
        "defaultManagementStyle": "Hands-on",
    }
)

RESULT = {
    "preview": {"service_type": "Executive Assistant", "primary_outcome": "Inbox zero"},
    "full_package": {"service_structure": {"service_type": "Ignored"}},
    "knowledgeBase": {"organizationId": "org-1", "version": 3, "snapshot": {"businessName": "Acme Co"}},
    "extractedInsights": ["uses HubSpot"],
}


def form(**overrides):
    base = {"businessName": "", "tasks": ["Answer emails", "  ", "Book calls"], "tools": "slack, Notion"}
    base.update(overrides)
    return base


def stream_response(*events, status=200):
    return FakeResponse(status, chunks=[ndjson(*events)])


# -------------------------------------------------
# Intake
# -------------------------------------------------
def test_org_form_defaults_without_profile():
    d = org_form_defaults(None)
    assert d["businessGoal"] == "Growth & Scale"
    assert d["weeklyHours"] == "40"
    assert d["englishLevel"] == "Excellent"
    assert d["managementStyle"] == "Async"


def test_org_form_defaults_with_profile():
    d = org_form_defaults(PROFILE)
    assert d["businessName"] == "Acme Co"
    assert d["tools"] == "Slack, HubSpot"
    assert d["englishLevel"] == ORG_DEFAULT


def test_merge_tools_is_case_insensitive():
    assert merge_tools(["Slack", "HubSpot"], ["slack", "Notion"]) == ["Slack", "HubSpot", "Notion"]


def test_resolve_form_with_profile():
    resolved = resolve_form_with_profile(
        form(businessGoal=ORG_DEFAULT, englishLevel=ORG_DEFAULT, managementStyle=ORG_DEFAULT),
        PROFILE,
    )
    assert resolved["businessName"] == "Acme Co"
    assert resolved["businessGoal"] == "Reduce churn"
    assert resolved["tools"] == ["Slack", "HubSpot", "Notion"]
    assert resolved["timezone"] == "America/New_York"
    assert resolved["weeklyHours"] == 30
    assert resolved["englishLevel"] == ""  # the profile has no default either
    assert resolved["managementStyle"] == "Hands-on"


def test_form_values_win_over_profile():
    resolved = resolve_form_with_profile(form(businessName="Other", weeklyHours="20", timezone="UTC"), PROFILE)
    assert (resolved["businessName"], resolved["weeklyHours"], resolved["timezone"]) == ("Other", 20, "UTC")


def test_validate_intake_requires_company_name():
    with pytest.raises(IntakeValidationError, match="Company name is required"):
        validate_intake(form())


def test_validate_intake_requires_a_task():
    with pytest.raises(IntakeValidationError, match="At least one task is required"):
        validate_intake(form(businessName="Acme", tasks=["", "   "]))


def test_validate_intake_checks_sop_url():
    files = [SOPAttachment(url="ftp://files/sop.pdf", name="sop.pdf")]
    with pytest.raises(IntakeValidationError) as exc:
        validate_intake(form(businessName="Acme"), sop_files=files)
    assert "ftp://files/sop.pdf" in exc.value.message


def test_validate_intake_builds_payload():
    tasks = [f"task {i}" for i in range(7)]
    files = [
        SOPAttachment(url="https://cdn/a.pdf", name="a.pdf", type="application/pdf", key="k"),
        SOPAttachment(url="https://cdn/b.pdf", name="b.pdf"),
    ]
    intake = validate_intake(form(tasks=tasks, clientFacing="Yes", existingSOPs="Yes"), PROFILE, files)

    p = intake.payload
    assert p["brand"] == {"name": "Acme Co"}
    assert p["tasks_top5"] == tasks[:5]
    assert p["client_facing"] is True
    assert p["existing_sops"] is True
    assert p["tools_raw"] == "Slack, HubSpot, Notion"
    assert p["sop_filename"] == "a.pdf, b.pdf"
    assert intake.sop_file.name == "a.pdf"

    body = build_analysis_request(intake)
    assert body["intake_json"] is p
    assert body["sopFileUrl"] == "https://cdn/a.pdf"
    assert body["sopFileKey"] == "k"


# -------------------------------------------------
# Analysis
# -------------------------------------------------
def test_analyze_streams_progress_and_result(client, session):
    resp = stream_response(
        {"type": "progress", "stage": "Reading intake"},
        {"type": "progress", "stage": "Designing role"},
        {"type": "result", "data": RESULT},
    )
    session.add("POST", ANALYZE_PATH, resp)
    stages = []

    result, raw = analyze(client, validate_intake(form(businessName="Acme")), lambda e: stages.append(e.stage))
    assert stages == ["Reading intake", "Designing role"]
    assert result.preview["service_type"] == "Executive Assistant"
    assert raw["knowledgeBase"]["version"] == 3
    assert resp.closed
    assert session.calls[0]["stream"] is True


def test_analyze_error_body_uses_user_message(client, session):
    session.add(
        "POST",
        ANALYZE_PATH,
        FakeResponse(500, {"error": "LLM timeout", "userMessage": "The analysis took too long."}),
    )
    with pytest.raises(ServerError) as exc:
        analyze(client, validate_intake(form(businessName="Acme")))
    assert exc.value.message == "LLM timeout"
    assert exc.value.display_message == "The analysis took too long."


def test_analyze_error_body_without_user_message(client, session):
    session.add("POST", ANALYZE_PATH, FakeResponse(400, {"error": "Bad intake"}))
    with pytest.raises(ServerError) as exc:
        analyze(client, validate_intake(form(businessName="Acme")))
    assert exc.value.message == "Bad intake"
    assert exc.value.display_message == "An error occurred during analysis"


def test_analyze_error_event(client, session):
    session.add("POST", ANALYZE_PATH, stream_response({"type": "error", "error": "failed", "userMessage": "Nope"}))
    with pytest.raises(AnalysisStreamError) as exc:
        analyze(client, validate_intake(form(businessName="Acme")))
    assert exc.value.display_message == "Nope"


def test_analyze_rejects_non_object_result(client, session):
    session.add("POST", ANALYZE_PATH, stream_response({"type": "result", "data": [1, 2]}))
    with pytest.raises(AnalysisStreamError, match="Failed to process analysis results"):
        analyze(client, validate_intake(form(businessName="Acme")))


def test_analysis_title():
    r = JDAnalysisResult.from_api(RESULT)
    assert analysis_title("Acme", r) == "Acme - Executive Assistant"
    r = JDAnalysisResult.from_api({"full_package": {"service_structure": {"service_type": "Ops"}}})
    assert analysis_title("", r) == "Analysis - Ops"
    assert analysis_title("Acme", JDAnalysisResult.from_api({})) == "Acme - Job Description Analysis"


# -------------------------------------------------
# Saved analyses
# -------------------------------------------------
def saved_list(*analyses):
    return FakeResponse(200, {"success": True, "data": {"analyses": list(analyses)}})


def test_load_latest_saved(client, session):
    session.add("GET", SAVED_PATH, saved_list({"id": "a1", "analysis": RESULT, "usedKnowledgeBaseVersion": 2}))
    saved = load_saved_analysis(client)
    assert saved.id == "a1"
    assert saved.provenance.used_knowledge_base_version == 2
    assert session.calls[0]["params"] == {"page": 1, "limit": 1}


def test_load_saved_by_id(client, session):
    session.add("GET", SAVED_PATH, saved_list({"id": "a1", "analysis": {}}, {"id": "a2", "analysis": RESULT}))
    assert load_saved_analysis(client, "a2").id == "a2"
    assert session.calls[0]["params"]["limit"] == 100
    with pytest.raises(ServerError, match="Analysis not found"):
        load_saved_analysis(client, "zzz")


def test_load_latest_when_nothing_saved(client, session):
    session.add("GET", SAVED_PATH, saved_list())
    assert load_saved_analysis(client) is None


# -------------------------------------------------
# Controller
# -------------------------------------------------
def test_submit_auto_saves(client, session, notices):
    session.add("POST", ANALYZE_PATH, stream_response({"type": "result", "data": RESULT}))
    session.add("POST", SAVE_PATH, FakeResponse(200, {"success": True, "savedAnalysis": {"id": "saved-1"}}))

    ctl = RoleBuilderController(client, notices)
    assert ctl.submit(form(), PROFILE)
    assert ctl.saved_analysis_id == "saved-1"
    assert not ctl.is_processing
    assert notices.items == []

    body = session.calls_to("POST", SAVE_PATH)[0]["json"]
    assert body["title"] == "Acme Co - Executive Assistant"
    assert body["organizationId"] == "org-1"
    assert body["usedKnowledgeBaseVersion"] == 3
    assert body["contributedInsights"] == ["uses HubSpot"]
    assert body["isFinalized"] is False


def test_submit_auto_save_failure_keeps_result(client, session, notices):
    session.add("POST", ANALYZE_PATH, stream_response({"type": "result", "data": RESULT}))
    session.add("POST", SAVE_PATH, FakeResponse(500, {"error": "db"}))

    ctl = RoleBuilderController(client, notices)
    assert ctl.submit(form(), PROFILE)
    assert ctl.result is not None
    assert ctl.saved_analysis_id is None
    assert notices.items == [Notice("error", "Auto-save failed", AUTO_SAVE_FAILED)]


def test_submit_validation_error_sends_nothing(client, session, notices):
    ctl = RoleBuilderController(client, notices)
    assert not ctl.submit(form())
    assert session.calls == []
    assert ctl.analysis_error == "Company name is required"
    assert notices.items == [Notice("error", "Analysis failed", "Company name is required")]


def test_submit_rate_limited(client, session, notices):
    session.add("POST", ANALYZE_PATH, FakeResponse(429, {"message": "Daily analysis limit reached.", "retryAfter": 3600}))
    ctl = RoleBuilderController(client, notices)
    assert not ctl.submit(form(), PROFILE)
    n = notices.items[0]
    assert n.title == "Rate limit exceeded"
    assert n.description == "Daily analysis limit reached. Please try again 60m."
    assert n.duration == 10


def test_submit_is_gated(client, notices):
    ctl = RoleBuilderController(client, notices)
    ctl.is_processing = True
    assert not ctl.submit(form(), PROFILE)


def test_manual_save(client, session, notices):
    session.add("POST", SAVE_PATH, FakeResponse(500, {}), FakeResponse(200, {"savedAnalysis": {"id": "s2"}}))
    ctl = RoleBuilderController(client, notices)
    assert not ctl.save()  # nothing to save yet

    ctl.result = JDAnalysisResult.from_api(RESULT)
    ctl.intake_data = {"businessName": "Acme"}
    assert not ctl.save()
    assert ctl.save()
    assert [n.title for n in notices.items] == ["Failed to save analysis. Please try again.", "Analysis saved"]
    assert ctl.saved_analysis_id == "s2"


def test_load_latest_guard(client, session, notices):
    session.add("GET", SAVED_PATH, saved_list({"id": "a1", "analysis": RESULT}))
    ctl = RoleBuilderController(client, notices)

    assert ctl.load_latest("u1")
    assert not ctl.load_latest("u1")
    assert ctl.load_latest("u1", analysis_id="a1")
    assert len(session.calls) == 2


def test_load_latest_failure_is_not_retried(client, session, notices):
    session.add("GET", SAVED_PATH, FakeResponse(500, {}))
    ctl = RoleBuilderController(client, notices)
    assert not ctl.load_latest("u1")
    assert ctl.has_no_saved_analyses
    assert not ctl.load_latest("u1")
    assert len(session.calls) == 1


def test_download_pdf(client, session, notices):
    session.add("POST", DOWNLOAD_PATH, FakeResponse(200, content=b"%PDF", headers={}))
    ctl = RoleBuilderController(client, notices)
    assert ctl.download_pdf() is None

    ctl.result = JDAnalysisResult.from_api(RESULT)
    assert ctl.download_pdf() == ("job-description-analysis.pdf", b"%PDF")


def test_download_pdf_failure(client, session, notices):
    session.add("POST", DOWNLOAD_PATH, FakeResponse(500, {"error": "render failed"}))
    ctl = RoleBuilderController(client, notices)
    ctl.result = JDAnalysisResult.from_api(RESULT)
    assert ctl.download_pdf() is None
    assert notices.items[0].title == "Failed to download job description. Please try again."
    assert not ctl.is_downloading
