from __future__ import annotations

import pytest

from bizbrain.app.logic.models import GeneratedSOP, ReviewSuggestion, SOPMetadata
from bizbrain.app.services.draft_store import DraftStore
from bizbrain.app.services.errors import ContentUnavailable, ServerError
from bizbrain.app.services.notices import Notice
from bizbrain.app.services.sop_builder import (
    DOWNLOAD_PATH,
    GENERATE_PATH,
    REVIEW_PATH,
    SAVED_PATH,
    UPDATE_PATH,
    SOPBuilderController,
    apply_suggestion,
    display_html,
    generate_sop,
    load_latest_sop,
    normalize_content,
    pdf_filename,
    publish_sop,
    sop_from_saved,
    update_sop,
)
from conftest import FakeResponse

FORM = {"sopTitle": "Client Onboarding", "processOverview": "Bring new clients on board"}

GENERATED = {
    "success": True,
    "sop": "# Client Onboarding\n1. Send welcome email",
    "sopHtml": "<h1>Client Onboarding</h1>",
    "sopId": "sop-1",
    "isDraft": True,
    "metadata": {"title": "Client Onboarding", "generatedAt": "2026-02-01T09:00:00Z", "tokens": {"total": 900}},
}


def sop(**overrides):
    base = GeneratedSOP(
        markdown="# Client Onboarding\n1. Send welcome email",
        html="<h1>Client Onboarding</h1>",
        sop_id="sop-1",
        metadata=SOPMetadata(title="Client Onboarding"),
    )
    return base.model_copy(update=overrides)


# -------------------------------------------------
# Content helpers
# -------------------------------------------------
def test_normalize_content_shapes():
    assert normalize_content("# legacy") == ("# legacy", None)
    assert normalize_content({"markdown": "# md", "html": "<p>x</p>"}) == ("# md", "<p>x</p>")
    assert normalize_content({"markdown": "# md", "html": ""}) == ("# md", None)
    assert normalize_content(None) == ("", None)


def test_display_html_prefers_html():
    assert display_html(sop()) == "<h1>Client Onboarding</h1>"


def test_display_html_escapes_markdown_fallback():
    out = display_html(sop(html=None, markdown="Use <b> & 'quotes'"))
    assert out == "<pre>Use &lt;b&gt; &amp; 'quotes'</pre>"


def test_display_html_without_content():
    with pytest.raises(ContentUnavailable, match="SOP content not available"):
        display_html(sop(html="  ", markdown=""))


def test_pdf_filename():
    assert pdf_filename("Client Onboarding v2!") == "Client_Onboarding_v2_.pdf"
    assert pdf_filename("") == "SOP.pdf"


def test_sop_from_saved_legacy_string():
    s = sop_from_saved({"id": "s9", "title": "Refunds", "content": "# Refunds", "versionNumber": 3, "isDraft": True})
    assert (s.markdown, s.html, s.sop_id, s.version_number, s.is_draft) == ("# Refunds", None, "s9", 3, True)
    assert s.metadata.title == "Refunds"


def test_apply_suggestion_replaces_first_occurrence():
    s = ReviewSuggestion(original="email", suggested="message")
    assert apply_suggestion("email then email", s) == "message then email"
    assert apply_suggestion("text", ReviewSuggestion(original="", suggested="x")) == "text"


# -------------------------------------------------
# Endpoint calls
# -------------------------------------------------
def test_generate_sop(client, session):
    session.add("POST", GENERATE_PATH, FakeResponse(200, GENERATED))
    s = generate_sop(client, FORM)
    assert s.sop_id == "sop-1"
    assert s.html == "<h1>Client Onboarding</h1>"
    assert s.metadata.tokens.total == 900
    assert session.calls[0]["json"] == FORM


def test_generate_sop_failure(client, session):
    session.add("POST", GENERATE_PATH, FakeResponse(500, {"success": False, "error": "Model overloaded"}))
    with pytest.raises(ServerError, match="Model overloaded"):
        generate_sop(client, FORM)


def test_save_as_draft_sends_existing(client, session):
    session.add(
        "POST",
        GENERATE_PATH,
        FakeResponse(200, {"success": True, "sopHtml": "<h1>v2</h1>", "sopId": "sop-2", "metadata": {"title": "Client Onboarding", "versionNumber": 2}}),
    )
    s = generate_sop(client, {}, save_as_draft=True, existing=sop())

    body = session.calls[0]["json"]
    assert body["saveAsDraft"] is True
    assert body["existingSOPHtml"] == "<h1>Client Onboarding</h1>"
    assert body["sopId"] == "sop-1"
    assert body["sopTitle"] == "Client Onboarding"
    assert body["primaryRole"] == "Process Performer"

    assert (s.sop_id, s.version_number, s.is_draft, s.is_current_version) == ("sop-2", 2, True, False)


def test_save_as_draft_without_html(client, session):
    session.add("POST", GENERATE_PATH, FakeResponse(200, {"success": True, "sopId": "sop-2"}))
    with pytest.raises(ContentUnavailable, match="No HTML content received from server"):
        generate_sop(client, {}, save_as_draft=True, existing=sop())


def test_publish_sop(client, session):
    session.add("POST", GENERATE_PATH, FakeResponse(200, {"success": True, "sopHtml": "<h1>final</h1>", "sopId": "sop-3", "metadata": {"title": "Client Onboarding"}}))
    s = publish_sop(client, {}, sop(is_draft=True))
    assert session.calls[0]["json"]["saveAndPublish"] is True
    assert (s.sop_id, s.is_draft, s.is_current_version, s.version_number) == ("sop-3", False, True, 1)


def test_update_sop_requires_id(client):
    with pytest.raises(ServerError, match="SOP ID not found"):
        update_sop(client, sop(sop_id=None), "# new")


def test_update_sop(client, session):
    session.add(
        "POST",
        UPDATE_PATH,
        FakeResponse(200, {"success": True, "sop": {"id": "sop-4", "version": 4, "content": {"markdown": "# new", "html": "<h1>new</h1>"}}}),
    )
    updated, version = update_sop(client, sop(), "# new", review_with_ai=True)
    assert version == 4
    assert (updated.sop_id, updated.markdown, updated.html) == ("sop-4", "# new", "<h1>new</h1>")
    assert session.calls[0]["json"] == {"sopId": "sop-1", "sopContent": "# new", "reviewWithAI": True}


def test_update_sop_failure(client, session):
    session.add("POST", UPDATE_PATH, FakeResponse(500, {"success": False}))
    with pytest.raises(ServerError, match="Failed to save SOP modifications"):
        update_sop(client, sop(), "# new")


def test_load_latest_sop(client, session):
    session.add("GET", SAVED_PATH, FakeResponse(200, {"success": True, "data": {"sops": [{"id": "s1", "content": {"markdown": "# a", "html": "<h1>a</h1>"}}]}}))
    assert load_latest_sop(client).html == "<h1>a</h1>"

    session.routes.clear()
    session.add("GET", SAVED_PATH, FakeResponse(200, {"success": True, "data": {"sops": []}}))
    assert load_latest_sop(client) is None

    session.routes.clear()
    session.add("GET", SAVED_PATH, FakeResponse(500, {}))
    with pytest.raises(ServerError, match="Failed to fetch saved SOPs"):
        load_latest_sop(client)


# -------------------------------------------------
# Controller
# -------------------------------------------------
@pytest.fixture
def drafts(tmp_path):
    return DraftStore(tmp_path / "drafts.db")


def test_generate_notifies(client, session, notices):
    session.add("POST", GENERATE_PATH, FakeResponse(200, GENERATED))
    ctl = SOPBuilderController(client, notices)
    assert ctl.generate(FORM)
    assert ctl.form_data == FORM
    assert notices.items == [
        Notice("success", "SOP generated successfully!", 'Your SOP "Client Onboarding" has been created.')
    ]


def test_generate_failure_sets_error(client, session, notices, connection_error):
    session.add("POST", GENERATE_PATH, connection_error)
    ctl = SOPBuilderController(client, notices)
    assert not ctl.generate(FORM)
    assert ctl.error == "Connection issue. Please check your network and try again."
    assert notices.items[0].title == "Failed to generate SOP"
    assert not ctl.is_processing


def test_save_draft_then_publish_manages_local_draft(client, session, notices, drafts):
    session.add(
        "POST",
        GENERATE_PATH,
        FakeResponse(200, GENERATED),
        FakeResponse(200, {"success": True, "sopHtml": "<h1>draft</h1>", "sopId": "sop-2", "metadata": {"title": "Client Onboarding"}}),
        FakeResponse(200, {"success": True, "sopHtml": "<h1>final</h1>", "sopId": "sop-3", "metadata": {"title": "Client Onboarding"}}),
    )
    ctl = SOPBuilderController(client, notices, drafts=drafts)
    ctl.user_id = "u1"
    ctl.generate(FORM)

    assert ctl.save_draft()
    draft = drafts.get_draft("u1")
    assert draft is not None and draft.sop.sop_id == "sop-2"
    assert draft.form_data == FORM

    assert ctl.publish()
    assert drafts.get_draft("u1") is None
    assert [n.title for n in notices.items][-2:] == ["SOP saved as draft", "SOP saved and published"]


def test_save_draft_without_sop(client, notices):
    ctl = SOPBuilderController(client, notices)
    assert not ctl.save_draft()
    assert notices.items == [Notice("error", "No SOP to save")]


def test_restore_pending_draft(client, notices, drafts):
    drafts.save_draft("u1", sop(is_draft=True), FORM)
    ctl = SOPBuilderController(client, notices, drafts=drafts)
    ctl.user_id = "u1"

    assert ctl.pending_draft() is not None
    assert ctl.restore_draft()
    assert ctl.sop.sop_id == "sop-1"
    assert ctl.form_data == FORM
    assert ctl.pending_draft() is None  # an SOP is loaded now


def test_save_modifications_review_fallback(client, session, notices):
    session.add("POST", REVIEW_PATH, FakeResponse(503, {}))
    session.add("POST", UPDATE_PATH, FakeResponse(200, {"success": True, "sop": {"id": "sop-5", "version": 5, "content": "# edited"}}))

    ctl = SOPBuilderController(client, notices)
    ctl.sop = sop()
    assert ctl.save_modifications("# edited", review_with_ai=True) == "saved"
    assert [n.level for n in notices.items] == ["warning", "success"]
    assert notices.items[0].title == "AI review unavailable"
    assert notices.items[1].description == "Your changes have been saved successfully (version 5)."
    assert ctl.sop.markdown == "# edited"


def test_save_modifications_with_suggestions(client, session, notices):
    session.add(
        "POST",
        REVIEW_PATH,
        FakeResponse(200, {"suggestions": [
            {"type": "clarity", "original": "Send welcome email", "suggested": "Send the welcome email within 24h", "reason": "timing"},
            {"type": "tone", "original": "Client", "suggested": "Customer", "reason": "consistency"},
        ]}),
    )
    ctl = SOPBuilderController(client, notices)
    ctl.sop = sop()

    content = "# Client Onboarding\n1. Send welcome email"
    assert ctl.save_modifications(content, review_with_ai=True) == "review"
    assert notices.items[-1] == Notice("info", "AI review complete", "Found 2 suggestion(s). Review them below.")
    assert session.calls_to("POST", UPDATE_PATH) == []

    content = ctl.accept_suggestion(content, 0)
    assert "within 24h" in content
    content = ctl.accept_all_suggestions(content)
    assert content.startswith("# Customer Onboarding")
    assert ctl.suggestions == []


def test_accept_stale_suggestion_leaves_content(client, notices):
    ctl = SOPBuilderController(client, notices)
    ctl.suggestions = [ReviewSuggestion(original="Client", suggested="Customer")]

    assert ctl.accept_suggestion("# Client Onboarding", 0) == "# Customer Onboarding"
    # the list is empty now, so the same index no longer points anywhere
    assert ctl.accept_suggestion("# Client Onboarding", 0) == "# Client Onboarding"
    assert ctl.accept_suggestion("# Client Onboarding", -1) == "# Client Onboarding"
    assert len(notices.items) == 1


def test_save_modifications_is_gated_while_submitting(client, session, notices):
    session.add("POST", UPDATE_PATH, FakeResponse(200, {"success": True, "sop": {"id": "sop-5", "version": 5, "content": "# x"}}))
    ctl = SOPBuilderController(client, notices)
    ctl.sop = sop()
    ctl.is_submitting = True

    assert ctl.save_modifications("# x") == "failed"
    assert ctl.save_modifications("# x", review_with_ai=True) == "failed"
    assert session.calls == []
    assert notices.items == []


def test_save_modifications_failure(client, session, notices):
    session.add("POST", UPDATE_PATH, FakeResponse(500, {"success": False, "error": "Version conflict"}))
    ctl = SOPBuilderController(client, notices)
    ctl.sop = sop()
    assert ctl.save_modifications("# x") == "failed"
    assert notices.items[-1] == Notice("error", "Failed to save modifications", "Version conflict")


def test_load_latest_once(client, session, notices):
    session.add("GET", SAVED_PATH, FakeResponse(200, {"success": True, "data": {"sops": []}}))
    ctl = SOPBuilderController(client, notices)
    assert not ctl.load_latest("u1")
    assert ctl.has_no_saved_sops
    assert not ctl.load_latest("u1")
    assert len(session.calls) == 1
    assert ctl.user_id == "u1"


def test_download_pdf(client, session, notices):
    session.add("POST", DOWNLOAD_PATH, FakeResponse(200, content=b"%PDF"))
    ctl = SOPBuilderController(client, notices)
    ctl.sop = sop()
    assert ctl.download_pdf() == ("Client_Onboarding.pdf", b"%PDF")
    assert session.calls[0]["json"] == {"sopContent": sop().markdown, "title": "Client Onboarding"}
    assert notices.items[-1].title == "PDF downloaded successfully!"
