from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pandas as pd
import streamlit as st

from bizbrain.app.config import APP_BRAND, USER_ID
from bizbrain.app.logging_config import configure_logging
from bizbrain.app.logic.models import Analyzed, DashboardSummary, RankedRecommendation
from bizbrain.app.logic.scoring import TIER_KEYS, TIER_LABELS, missing_tier_fields, tier_percentage
from bizbrain.app.services.api_client import DashboardClient
from bizbrain.app.services.draft_store import DraftStore
from bizbrain.app.services.errors import ContentUnavailable
from bizbrain.app.services.knowledge_base import KnowledgeBaseController, pending_documents
from bizbrain.app.services.ndjson_stream import ProgressEvent
from bizbrain.app.services.notices import NoticeLog
from bizbrain.app.services.role_builder import RoleBuilderController, SOPAttachment, org_form_defaults
from bizbrain.app.services.sop_builder import SOPBuilderController, display_html
from bizbrain.app.services.sop_versions import SOPVersionManager

configure_logging()
logger = logging.getLogger("bizbrain.dashboard")

PAGE_KB = "Knowledge Base"
PAGE_ROLE = "Role Builder"
PAGE_SOP = "SOP Builder"

TOAST_ICONS = {"success": "✅", "info": "ℹ️", "warning": "⚠️", "error": "❌"}


# =============================================================================
# Session wiring
# =============================================================================
def _state(key: str, factory):
    if key not in st.session_state:
        st.session_state[key] = factory()
    return st.session_state[key]


def notices() -> NoticeLog:
    return _state("notices", NoticeLog)


def client() -> DashboardClient:
    return _state("client", DashboardClient)


def kb_controller() -> KnowledgeBaseController:
    return _state("kb_controller", lambda: KnowledgeBaseController(client(), notices()))


def role_controller() -> RoleBuilderController:
    return _state("role_controller", lambda: RoleBuilderController(client(), notices()))


def sop_controller() -> SOPBuilderController:
    return _state("sop_controller", lambda: SOPBuilderController(client(), notices(), drafts=DraftStore()))


def version_manager() -> SOPVersionManager:
    return _state("sop_versions", lambda: SOPVersionManager(client(), notices()))


def flush_notices() -> None:
    for n in notices().drain():
        body = f"**{n.title}**" + (f"\n\n{n.description}" if n.description else "")
        st.toast(body, icon=TOAST_ICONS.get(n.level))


def _lines(text: str) -> List[str]:
    return [ln.strip() for ln in (text or "").splitlines() if ln.strip()]


# =============================================================================
# Knowledge Base
# =============================================================================
def _recommendations_df(items: List[RankedRecommendation]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Task": r.message,
                "Priority": r.priority,
                "Source": r.source,
                "Fields": ", ".join(r.fields),
                "Minutes": r.time_estimate,
            }
            for r in items
        ]
    )


def render_summary(summary: DashboardSummary) -> None:
    c1, c2, c3 = st.columns(3)
    primary = summary.health.primary_score
    c1.metric(summary.health.primary_label, f"{primary}%" if primary is not None else "—")
    coverage = summary.health.coverage_score
    c2.metric("Field coverage", f"{coverage}%" if coverage is not None else "—", summary.completion_tier)
    bb = summary.business_brain
    c3.metric("Business Brain", f"{bb.score}", bb.quality_label.title())
    st.caption(bb.message)

    if summary.next_milestone is not None:
        st.info(f"**{summary.next_milestone.title}**: {summary.next_milestone.message}")


def render_tiers() -> None:
    completion = kb_controller().snapshot.completion
    if completion is None:
        return
    st.markdown("#### Completion by tier")
    for key in TIER_KEYS:
        pct = tier_percentage(completion, key)
        st.progress(pct / 100, text=f"{TIER_LABELS[key]}: {pct}%")
        missing = missing_tier_fields(getattr(completion.tier_status, key))
        if missing:
            st.caption("Missing: " + ", ".join(missing))


def render_tools(summary: DashboardSummary) -> None:
    if not summary.tools:
        return
    st.markdown("#### Tool readiness")
    df = pd.DataFrame(
        [
            {
                "Tool": t.label,
                "Ready": "Yes" if t.ready else "No",
                "Score": t.score,
                "Quality score": t.quality_score,
                "AI enriched": "Yes" if t.enriched else "",
                "Minutes to ready": t.time_to_ready,
                "Missing": ", ".join(t.missing_fields),
            }
            for t in summary.tools
        ]
    )
    st.dataframe(df, use_container_width=True, hide_index=True)


def render_documents() -> None:
    ctl = kb_controller()
    docs = ctl.snapshot.documents
    st.markdown("#### Documents")
    if st.button("Refresh documents", key="kb_refresh_docs"):
        docs = ctl.refresh_documents()
    if not docs:
        st.caption("No documents uploaded yet.")
        return
    st.dataframe(
        pd.DataFrame(
            [
                {"Name": d.file_name, "Type": d.file_type, "Size": d.file_size, "Status": d.extraction_status}
                for d in docs
            ]
        ),
        use_container_width=True,
        hide_index=True,
    )
    pending = pending_documents(docs)
    if pending:
        st.caption(f"{len(pending)} document(s) still processing. Refresh to check again.")


PROFILE_FORM_FIELDS = [
    ("businessName", "Business name"),
    ("website", "Website"),
    ("industry", "Industry"),
    ("whatYouSell", "What you sell"),
    ("idealCustomer", "Ideal customer"),
    ("coreOffer", "Core offer"),
    ("primaryGoal", "Primary goal"),
    ("biggestBottleNeck", "Biggest bottleneck"),
    ("topObjection", "Top objection"),
    ("customerJourney", "Customer journey"),
    ("brandVoiceStyle", "Brand voice"),
    ("defaultTimeZone", "Default time zone"),
    ("supportEmail", "Support email"),
]


def render_profile_form() -> None:
    ctl = kb_controller()
    profile = ctl.snapshot.profile
    current = profile.model_dump(by_alias=True) if profile is not None else {}

    with st.expander("Edit knowledge base", expanded=profile is None):
        with st.form("kb_profile_form"):
            values: Dict[str, Any] = {}
            for key, label in PROFILE_FORM_FIELDS:
                values[key] = st.text_input(label, value=current.get(key) or "", key=f"kb_{key}")
            tools = st.text_input("Tool stack (comma-separated)", value=", ".join(current.get("toolStack") or []))
            values["toolStack"] = [t.strip() for t in tools.split(",") if t.strip()]
            submitted = st.form_submit_button("Save", disabled=ctl.is_saving)
        if submitted:
            with st.spinner("Saving..."):
                ctl.save(values)


def render_knowledge_base_page() -> None:
    ctl = kb_controller()
    with st.spinner("Loading knowledge base..."):
        ctl.load(USER_ID)

    if ctl.error:
        st.error(ctl.error)
        if st.button("Retry", key="kb_retry"):
            ctl.load(USER_ID, force=True)
        return

    summary = ctl.summary
    render_summary(summary)

    cta = summary.primary_cta
    st.markdown(f"**Next step:** {cta.label}. {cta.description}")
    if cta.action == "analyze_quality" or isinstance(ctl.snapshot.quality, Analyzed):
        label = "Run quality check" if cta.action == "analyze_quality" else "Re-run quality check"
        if st.button(label, disabled=ctl.is_analyzing_quality, key="kb_quality"):
            with st.spinner("Analyzing knowledge base quality..."):
                ctl.run_quality_analysis()

    if summary.quick_wins:
        st.markdown("#### Quick wins")
        st.dataframe(_recommendations_df(summary.quick_wins), use_container_width=True, hide_index=True)
    if summary.remaining_tasks:
        with st.expander(f"All tasks ({len(summary.remaining_tasks)})"):
            st.dataframe(_recommendations_df(summary.remaining_tasks), use_container_width=True, hide_index=True)

    render_tools(summary)
    render_tiers()
    render_documents()
    render_profile_form()


# =============================================================================
# Role Builder
# =============================================================================
def render_role_builder_page() -> None:
    ctl = role_controller()
    profile = kb_controller().snapshot.profile
    defaults = org_form_defaults(profile)

    ctl.load_latest(USER_ID, st.query_params.get("analysisId"))

    with st.form("role_intake"):
        form: Dict[str, Any] = {
            "businessName": st.text_input("Company name", value=defaults["businessName"]),
            "website": st.text_input("Website"),
            "businessGoal": st.text_input("Business goal", value=defaults["businessGoal"]),
            "outcome90Day": st.text_area("90-day outcome", height=80),
            "tasks": _lines(st.text_area("Top tasks (one per line, up to 5)", height=120)),
            "requirements": _lines(st.text_area("Requirements (one per line)", height=80)),
            "weeklyHours": st.text_input("Weekly hours", value=defaults["weeklyHours"]),
            "timezone": st.text_input("Time zone", value=defaults["timezone"]),
            "tools": st.text_input("Role-specific tools (comma-separated)"),
            "englishLevel": st.text_input("English level", value=defaults["englishLevel"]),
            "managementStyle": st.text_input("Management style", value=defaults["managementStyle"]),
            "clientFacing": st.selectbox("Client facing?", ["No", "Yes"]),
            "existingSOPs": st.selectbox("Existing SOPs?", ["No", "Yes"]),
        }
        sop_url = st.text_input("SOP file URL (optional)")
        sop_name = st.text_input("SOP file name", value="sop.pdf")
        submitted = st.form_submit_button("Analyze", disabled=ctl.is_processing)

    if submitted:
        sop_files = [SOPAttachment(url=sop_url.strip(), name=sop_name.strip() or "sop.pdf")] if sop_url.strip() else None
        with st.status("Analyzing role...", expanded=True) as status:

            def on_progress(event: ProgressEvent) -> None:
                status.update(label=event.stage)
                st.write(event.stage)

            ok = ctl.submit(form, profile, sop_files, on_progress)
            status.update(label="Analysis complete" if ok else "Analysis failed", state="complete" if ok else "error")

    if ctl.analysis_error:
        st.error(ctl.analysis_error)

    if ctl.result is None:
        if ctl.has_no_saved_analyses:
            st.caption("No saved analyses yet. Fill in the form to run your first one.")
        return

    summary = ctl.result.preview.get("summary") or {}
    st.markdown(f"### {ctl.result.preview.get('service_type') or 'Analysis'}")
    st.write(summary.get("role_recommendation") or "")
    cols = st.columns(2)
    cols[0].markdown(f"**Primary outcome:** {ctl.result.preview.get('primary_outcome') or '—'}")
    cols[1].markdown(f"**Confidence:** {ctl.result.preview.get('confidence') or '—'}")
    risks = ctl.result.preview.get("key_risks") or []
    if risks:
        st.markdown("**Key risks**")
        for r in risks:
            st.markdown(f"- {r}")

    c1, c2 = st.columns(2)
    if c1.button("Save analysis", key="role_save"):
        ctl.save()
    if c2.button("Prepare PDF", disabled=ctl.is_downloading, key="role_pdf"):
        out = ctl.download_pdf()
        if out:
            st.download_button("Download PDF", data=out[1], file_name=out[0], mime="application/pdf")


# =============================================================================
# SOP Builder
# =============================================================================
SOP_FORM_FIELDS = [
    ("sopTitle", "SOP title"),
    ("processOverview", "Process overview"),
    ("primaryRole", "Primary role"),
    ("mainSteps", "Main steps"),
    ("toolsUsed", "Tools used"),
    ("frequency", "Frequency"),
    ("trigger", "Trigger"),
    ("successCriteria", "Success criteria"),
]


def render_sop_versions() -> None:
    ctl = sop_controller()
    vm = version_manager()
    if ctl.sop is None or not ctl.sop.sop_id:
        return

    if vm.sop is None or vm.sop.sop_id != ctl.sop.sop_id:
        vm.sop = ctl.sop
        vm.selected_version_id = None
        vm.load_versions(ctl.sop.root_sop_id or ctl.sop.sop_id)

    if not vm.versions:
        return
    labels = {v.id: f"v{v.version_number}" + (" (current)" if v.is_current_version else "") for v in vm.versions}
    ids = list(labels)
    selected = vm.selected_version_id if vm.selected_version_id in ids else ids[0]
    choice = st.selectbox("Version", ids, index=ids.index(selected), format_func=labels.get, key="sop_version")
    c1, c2 = st.columns(2)
    if c1.button("Load version", key="sop_load_version") and vm.load_version(choice):
        ctl.sop = vm.sop
    if c2.button("Restore as current", disabled=vm.is_restoring, key="sop_restore") and vm.restore_version(choice):
        ctl.sop = vm.sop


def render_sop_editor() -> None:
    ctl = sop_controller()
    with st.expander("Edit SOP"):
        content = st.text_area("Markdown", value=ctl.sop.markdown, height=300, key="sop_edit_content")
        review = st.checkbox("Review with AI before saving", key="sop_review")
        if st.button("Save changes", disabled=ctl.is_submitting or ctl.is_reviewing, key="sop_save_changes"):
            with st.spinner("Saving..."):
                ctl.save_modifications(content, review)

        for i, s in enumerate(list(ctl.suggestions)):
            st.markdown(f"**{s.type or 'Suggestion'}**: {s.reason}")
            st.markdown(f"~~{s.original}~~ → {s.suggested}")
            if st.button("Accept", key=f"sop_accept_{i}"):
                st.session_state["sop_edit_content"] = ctl.accept_suggestion(content, i)
                st.rerun()
        if ctl.suggestions:
            c1, c2 = st.columns(2)
            if c1.button("Accept all", key="sop_accept_all"):
                st.session_state["sop_edit_content"] = ctl.accept_all_suggestions(content)
                st.rerun()
            if c2.button("Save without suggestions", key="sop_save_anyway"):
                ctl.save_modifications(content, False)


def render_sop_builder_page() -> None:
    ctl = sop_controller()
    ctl.load_latest(USER_ID)

    draft = ctl.pending_draft()
    if draft is not None:
        st.info(f"You have an unsaved draft from {draft.updated_at}.")
        c1, c2 = st.columns(2)
        if c1.button("Restore draft", key="sop_restore_draft"):
            ctl.restore_draft()
            st.rerun()
        if c2.button("Discard draft", key="sop_discard_draft"):
            ctl.forget_draft()
            st.rerun()

    with st.expander("Generate a new SOP", expanded=ctl.sop is None):
        with st.form("sop_form"):
            form = {key: st.text_area(label, height=70, key=f"sop_{key}") for key, label in SOP_FORM_FIELDS}
            submitted = st.form_submit_button("Generate SOP", disabled=ctl.is_processing)
        if submitted:
            with st.spinner("Generating your SOP..."):
                ctl.generate({k: v for k, v in form.items() if v.strip()})

    if ctl.error:
        st.error(ctl.error)

    if ctl.sop is None:
        if ctl.has_no_saved_sops:
            st.caption("No saved SOPs yet.")
        return

    render_sop_versions()

    st.markdown(f"### {ctl.sop.metadata.title}")
    try:
        st.markdown(display_html(ctl.sop), unsafe_allow_html=True)
    except ContentUnavailable as e:
        st.warning(e.display_message)
        if st.button("Regenerate", key="sop_regenerate"):
            ctl.sop = None
            st.rerun()
        return

    c1, c2, c3 = st.columns(3)
    if c1.button("Save as draft", disabled=ctl.is_submitting, key="sop_save_draft"):
        ctl.save_draft()
    if c2.button("Save and publish", disabled=ctl.is_submitting, key="sop_publish"):
        ctl.publish()
    if c3.button("Prepare PDF", disabled=ctl.is_downloading, key="sop_pdf"):
        out = ctl.download_pdf()
        if out:
            st.download_button("Download PDF", data=out[1], file_name=out[0], mime="application/pdf")

    render_sop_editor()


# =============================================================================
# Shell
# =============================================================================
def main() -> None:
    st.set_page_config(page_title=APP_BRAND, page_icon="🧠", layout="wide")

    flush_notices()
    st.sidebar.title(APP_BRAND)
    page = st.sidebar.radio("Go to", [PAGE_KB, PAGE_ROLE, PAGE_SOP], key="page")

    if page == PAGE_KB:
        render_knowledge_base_page()
    elif page == PAGE_ROLE:
        kb_controller().load(USER_ID)
        render_role_builder_page()
    else:
        render_sop_builder_page()

    flush_notices()


if __name__ == "__main__":
    main()
