"""
FactoryFind
===========
A Streamlit dashboard for discovering and verifying manufacturers of a given
product in a given country. The research itself runs in three grounded
Gemini searches (see factory_search.py):

    1. Major manufacturers and exporters from international directories
    2. Local SMEs found through local-language registries and industrial zones
    3. Trade fair exhibitors and industry association members

Results are deduplicated across batches, then shown as a verification-scored
table with summary charts and CSV / JSON / PDF downloads.

Streamlit reruns the whole script on every interaction. A submitted search
is therefore stored as pending, the page reruns with the form disabled, and
only then does the run start; progress is streamed into a placeholder while
the batches execute.
"""

import html
import logging
import re

import pandas as pd
import plotly.express as px
import streamlit as st

from config import configure_logging, get_settings
from exports import (
    CSV_FILE_NAME,
    JSON_FILE_NAME,
    PDF_FILE_NAME,
    coerce_score,
    is_factory,
    records_to_csv,
    records_to_json,
    records_to_pdf,
    score_distribution,
    score_tier,
    type_distribution,
)
from factory_search import (
    EXPORT_CAPABILITIES,
    INDUSTRIES,
    SearchParams,
    SearchState,
    SearchStep,
    TERMINAL_STEPS,
    initialise_llm,
    run_search,
)

logger = logging.getLogger(__name__)


# --------------------------------------------------------------
# CONFIGURATION
# --------------------------------------------------------------
APP_TITLE = "FactoryFind AI"
APP_ICON = ":material/factory:"
LLM_OPTIONS = [
    "Gemini 2.5 Flash",
    "Gemini 2.5 Pro",
]
LLM_MODEL_MAP = {
    "Gemini 2.5 Flash": "gemini-2.5-flash",
    "Gemini 2.5 Pro": "gemini-2.5-pro",
}
LLM_DESCRIPTIONS = {
    "Gemini 2.5 Flash": "Fast & cheap -- good for a first sweep",
    "Gemini 2.5 Pro": "Most capable Gemini -- slower, more thorough searches",
}
PROGRESS_STEPS = [
    (SearchStep.GENERATING_QUERIES, "Initializing"),
    (SearchStep.BATCH_1, "Batch 1: Major Factories"),
    (SearchStep.BATCH_2, "Batch 2: Local & SMEs"),
    (SearchStep.BATCH_3, "Batch 3: Trade Fairs & Niche"),
    (SearchStep.FINALIZING, "Processing Data"),
]
SCORE_BADGE_CLASSES = {
    "green": "score-high",
    "yellow": "score-med",
    "red": "score-low",
}
CHART_COLORS = ["#4f46e5", "#94a3b8", "#fbbf24", "#f87171"]


# --------------------------------------------------------------
# HELPER FUNCTIONS
# --------------------------------------------------------------

def describe_api_error(message: str) -> str:
    """Return actionable guidance for common Google Gemini API failures.

    The run's own error message is always shown verbatim; this only adds a
    hint underneath when the failure matches a known pattern.
    """
    error_msg = (message or "").lower()
    if "missing in environment" in error_msg:
        return (
            "Set GOOGLE_API_KEY in the environment or in a .env file next to "
            "app.py, then restart the app."
        )
    if "api key" in error_msg or "api_key" in error_msg or "authentication" in error_msg:
        return "The configured Google AI API key was rejected. Check it and try again."
    if "resource_exhausted" in error_msg or "429" in error_msg or "quota" in error_msg:
        return (
            "The Gemini API has per-minute quotas. Please wait 1-2 minutes and "
            "try again, or switch to the other model."
        )
    if "404" in error_msg or "not_found" in error_msg:
        return (
            "The selected model may be temporarily unavailable. Please try "
            "the other Gemini model."
        )
    return ""


def esc(value) -> str:
    return html.escape("" if value is None else str(value))


_MARKDOWN_SPECIAL = re.compile(r"([\\`*_{}\[\]()#+\-.!|~<>$])")


def escape_markdown(value) -> str:
    """Backslash-escape characters Streamlit's markdown renderer would interpret."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", "" if value is None else str(value))


def as_list(value) -> list:
    return value if isinstance(value, list) else []


# --------------------------------------------------------------
# SESSION STATE
# --------------------------------------------------------------

def init_session_state():
    """Initialise session state variables on the first run."""
    defaults = {
        "search_state": SearchState(),
        "pending_params": None,
        "last_params": None,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def reset_search():
    """Clear results so the page never mixes a new query with old records."""
    st.session_state.search_state = SearchState()
    st.session_state.pending_params = None


# --------------------------------------------------------------
# STREAMLIT UI
# --------------------------------------------------------------

def inject_custom_css():
    """Badge, card and table styles for the results view."""
    st.markdown("""
    <style>
    .results-table {
        width: 100%;
        border-collapse: collapse;
        font-size: 14px;
        margin: 0.5rem 0 1rem 0;
    }
    .results-table thead th {
        background: #F8FAFC;
        color: #64748B;
        text-transform: uppercase;
        font-size: 11px;
        font-weight: 600;
        letter-spacing: 0.5px;
        padding: 10px 14px;
        text-align: left;
        border-bottom: 1px solid #E2E8F0;
    }
    .results-table tbody td {
        padding: 12px 14px;
        border-bottom: 1px solid #F1F5F9;
        vertical-align: top;
        color: #334155;
    }
    .results-table tbody tr:hover {
        background: #F8FAFC;
    }
    .company-name {
        font-weight: 600;
        font-size: 15px;
        color: #0F172A;
    }
    .badge {
        display: inline-block;
        padding: 2px 9px;
        border-radius: 999px;
        font-size: 11px;
        font-weight: 600;
        margin: 4px 4px 0 0;
    }
    .type-factory { background: #DBEAFE; color: #1E40AF; }
    .type-other { background: #F1F5F9; color: #334155; }
    .category { background: #F1F5F9; color: #64748B; font-weight: 400; }
    .score-high { background: #DCFCE7; color: #15803D; }
    .score-med { background: #FEF9C3; color: #A16207; }
    .score-low { background: #FEE2E2; color: #B91C1C; }
    .cert {
        display: inline-block;
        font-size: 10px;
        padding: 1px 6px;
        margin: 3px 3px 0 0;
        background: #EEF2FF;
        color: #4338CA;
        border: 1px solid #E0E7FF;
        border-radius: 4px;
    }
    .muted { color: #94A3B8; font-size: 12px; }
    .no-contact { color: #94A3B8; font-style: italic; }
    .location-country {
        color: #64748B;
        font-size: 11px;
        font-weight: 600;
        text-transform: uppercase;
        letter-spacing: 0.5px;
    }
    .notes { color: #64748B; font-size: 12px; margin-top: 6px; }
    .kpi-card {
        background: #FFFFFF;
        border: 1px solid #E2E8F0;
        border-radius: 12px;
        padding: 1.5rem;
        text-align: center;
    }
    .kpi-card .kpi-label {
        color: #64748B;
        font-size: 12px;
        font-weight: 600;
        text-transform: uppercase;
        letter-spacing: 1px;
    }
    .kpi-card .kpi-value {
        font-size: 40px;
        font-weight: 700;
        color: #0F172A;
    }
    </style>
    """, unsafe_allow_html=True)


def render_sidebar(state: SearchState) -> str:
    """Render sidebar controls and return the selected model name.

    The API key is read from the environment only; the sidebar reports
    whether one is configured without ever displaying it.
    """
    settings = get_settings()

    with st.sidebar:
        st.markdown("### Configuration")

        selected_model = st.selectbox(
            "Select Model",
            options=LLM_OPTIONS,
            index=0,
            help="Choose the Gemini model used for all three search batches.",
            disabled=state.is_loading,
        )

        desc = LLM_DESCRIPTIONS.get(selected_model, "")
        if desc:
            st.caption(desc)

        if settings.google_api_key:
            st.markdown("Google AI API key: :green[configured]")
        else:
            st.markdown("Google AI API key: :red[missing]")
            st.caption(
                "Set GOOGLE_API_KEY in the environment. Get a key from "
                "[Google AI Studio](https://aistudio.google.com/apikey)"
            )

        st.divider()
        st.markdown("### Pipeline Status")
        render_pipeline_status(state.step)

    return selected_model


def render_pipeline_status(step: SearchStep):
    ids = [s for s, _ in PROGRESS_STEPS]
    if step == SearchStep.COMPLETE:
        current = len(ids)
    elif step in ids:
        current = ids.index(step)
    else:
        current = -1

    for i, (_, label) in enumerate(PROGRESS_STEPS):
        if i < current:
            st.markdown(f"~~{label}~~ :green[Done]")
        elif i == current:
            st.markdown(f"**{label}** :orange[In progress]")
        else:
            st.markdown(label)


def render_search_form(state: SearchState) -> SearchParams | None:
    """Product / country / industry form. Returns params on a valid submit."""
    st.subheader(":material/search: New Research Task")

    with st.form("search_form"):
        col1, col2, col3 = st.columns(3)
        with col1:
            product = st.text_input(
                "Product Name",
                placeholder="e.g. Ceramic Tiles, T-Shirts",
                disabled=state.is_loading,
            )
        with col2:
            country = st.text_input(
                "Target Country",
                placeholder="e.g. Spain, Vietnam, China",
                disabled=state.is_loading,
            )
        with col3:
            industry = st.selectbox(
                "Industry Sector",
                options=[""] + INDUSTRIES,
                format_func=lambda x: x or "Select Industry...",
                disabled=state.is_loading,
            )

        submitted = st.form_submit_button(
            "Researching..." if state.is_loading else "Start Research",
            type="primary",
            disabled=state.is_loading,
        )

    if not submitted:
        return None

    params = SearchParams(product=product.strip(), country=country.strip(), industry=industry)
    if not params.is_complete():
        st.warning("Please enter both a **product** and a **target country**.")
        return None
    return params


def render_step_indicator(container, step: SearchStep):
    """Progress bar over the five named stages; empty for idle and terminal states."""
    if step in TERMINAL_STEPS or step == SearchStep.IDLE:
        container.empty()
        return

    ids = [s for s, _ in PROGRESS_STEPS]
    active_index = ids.index(step) if step in ids else 0

    with container.container(border=True):
        st.markdown(
            "**:material/layers: Deep Search in Progress...** "
            ":violet-background[Exhaustive Mode]"
        )
        st.progress((active_index + 1) / len(PROGRESS_STEPS))
        cols = st.columns(len(PROGRESS_STEPS))
        for idx, (col, (_, label)) in enumerate(zip(cols, PROGRESS_STEPS)):
            if idx == active_index:
                col.markdown(f"**{label}**")
            elif idx < active_index:
                col.caption(label)
            else:
                col.caption(f":gray[{label}]")


def execute_search(params: SearchParams, model_name: str):
    """Run the three batches, streaming stage changes into a placeholder."""
    placeholder = st.empty()
    state = st.session_state.search_state

    def on_step(current: SearchState):
        render_step_indicator(placeholder, current.step)

    llm = None
    try:
        llm = initialise_llm(get_settings(), LLM_MODEL_MAP[model_name])
    except Exception as e:
        logger.error("Could not initialise Gemini: %s", e)
        state.start()
        state.fail(str(e))
        return

    run_search(params, on_step=on_step, llm=llm, state=state)
    placeholder.empty()
    logger.info(
        "Search for %r in %r finished: %s (%d records)",
        params.product, params.country, state.step.value, len(state.records),
    )


def render_stats_dashboard(records: list[dict]):
    """Total count plus factory-vs-trader and score-tier charts."""
    col1, col2, col3 = st.columns(3)

    with col1:
        st.markdown(
            f'<div class="kpi-card">'
            f'<div class="kpi-label">Total Verified</div>'
            f'<div class="kpi-value">{len(records)}</div>'
            f'<div class="muted">Companies Found</div>'
            f'</div>',
            unsafe_allow_html=True,
        )

    with col2:
        distribution = type_distribution(records)
        pie_df = pd.DataFrame(
            {"type": list(distribution.keys()), "count": list(distribution.values())}
        )
        fig = px.pie(
            pie_df, names="type", values="count", hole=0.5,
            title="Factory vs. Trader", color_discrete_sequence=CHART_COLORS,
        )
        fig.update_layout(height=260, margin=dict(t=40, b=10, l=10, r=10))
        st.plotly_chart(fig, use_container_width=True)

    with col3:
        score_df = pd.DataFrame(score_distribution(records))
        fig = px.bar(
            score_df, x="name", y="count", title="Data Confidence",
            color_discrete_sequence=CHART_COLORS[:1],
        )
        fig.update_layout(
            height=260, margin=dict(t=40, b=10, l=10, r=10),
            xaxis_title=None, yaxis_visible=False,
        )
        st.plotly_chart(fig, use_container_width=True)


def render_contact_cell(record: dict) -> str:
    emails = [e for e in as_list(record.get("emails")) if isinstance(e, dict)]
    phones = [p for p in as_list(record.get("phone_numbers")) if isinstance(p, dict)]
    if not emails and not phones:
        return '<span class="no-contact">No contact info found</span>'

    lines = []
    for e in emails[:2]:
        lines.append(
            f'&#9993; {esc(e.get("email"))} <span class="muted">({esc(e.get("role"))})</span>'
        )
    for p in phones[:2]:
        lines.append(
            f'&#9742; {esc(p.get("number"))} <span class="muted">({esc(p.get("type"))})</span>'
        )
    return "<br>".join(lines)


def render_export_cell(record: dict) -> str:
    capability = record.get("export_capability")
    if capability not in EXPORT_CAPABILITIES:
        capability = "Unknown"
    icon = {"Yes": "&#9989;", "No": "&#9888;&#65039;"}.get(capability, "&#9675;")
    cell = f"{icon} {esc(capability)}"
    if record.get("notes"):
        cell += f'<div class="notes">{esc(record["notes"])}</div>'
    return cell


def render_results_table(records: list[dict]):
    """Render records as styled HTML: company, contact, location, score, export."""
    st.markdown(f"#### Identified Companies ({len(records)})")

    rows = ""
    for record in records:
        manufacturer_type = record.get("manufacturer_type") or "Unknown"
        type_class = "type-factory" if is_factory(manufacturer_type) else "type-other"
        company = (
            f'<div class="company-name">{esc(record.get("company_name"))}</div>'
            f'<span class="badge {type_class}">{esc(manufacturer_type)}</span>'
        )
        if record.get("product_category"):
            company += f'<span class="badge category">{esc(record["product_category"])}</span>'
        if record.get("website"):
            company += (
                f'<div><a href="{esc(record["website"])}" target="_blank" '
                f'rel="noreferrer">Website</a></div>'
            )

        location = (
            f'<div>{esc(record.get("city"))}</div>'
            f'<div class="location-country">{esc(record.get("country"))}</div>'
        )

        score = coerce_score(record.get("verification_score"))
        badge_class = SCORE_BADGE_CLASSES[score_tier(score)]
        verification = f'<span class="muted">Score:</span> <span class="badge {badge_class}">{score:.1f}/10</span>'
        certs = [c for c in as_list(record.get("certifications")) if c][:3]
        if certs:
            verification += "<div>" + "".join(
                f'<span class="cert" title="{esc(c)}">{esc(c)}</span>' for c in certs
            ) + "</div>"

        rows += (
            f"<tr><td>{company}</td>"
            f"<td>{render_contact_cell(record)}</td>"
            f"<td>{location}</td>"
            f"<td>{verification}</td>"
            f"<td>{render_export_cell(record)}</td></tr>"
        )

    st.markdown(
        '<table class="results-table"><thead><tr>'
        "<th>Company &amp; Type</th><th>Contact Details</th><th>Location</th>"
        "<th>Verification</th><th>Export Cap</th>"
        f"</tr></thead><tbody>{rows}</tbody></table>",
        unsafe_allow_html=True,
    )

    with st.expander("Data sources", expanded=False):
        for record in records:
            sources = [s for s in as_list(record.get("data_sources")) if s]
            if not sources:
                continue
            st.markdown(f"**{escape_markdown(record.get('company_name') or 'Unnamed company')}**")
            for url in sources:
                st.text(str(url))


def render_downloads(records: list[dict]):
    col1, col2, col3 = st.columns(3)
    with col1:
        st.download_button(
            label="Download CSV",
            data=records_to_csv(records),
            file_name=CSV_FILE_NAME,
            mime="text/csv",
            icon=":material/download:",
        )
    with col2:
        st.download_button(
            label="Download JSON",
            data=records_to_json(records),
            file_name=JSON_FILE_NAME,
            mime="application/json",
            icon=":material/download:",
        )
    with col3:
        try:
            pdf_bytes = records_to_pdf(records)
        except Exception:
            logger.exception("PDF export failed")
            st.caption("PDF generation failed -- use the CSV or JSON export.")
        else:
            st.download_button(
                label="Download PDF",
                data=pdf_bytes,
                file_name=PDF_FILE_NAME,
                mime="application/pdf",
                icon=":material/download:",
            )


def render_results(state: SearchState):
    if state.step == SearchStep.ERROR and state.error:
        st.error(state.error, icon=":material/error:")
        hint = describe_api_error(state.error)
        if hint:
            st.caption(hint)
        return

    if state.step != SearchStep.COMPLETE:
        return

    if not state.records:
        st.info(
            "No companies were found. Try a broader product name or a "
            "different industry sector."
        )
        return

    params = st.session_state.last_params
    header = "Research Results"
    if params is not None:
        header += f": {params.product} in {params.country}"
    st.markdown(f"### {header}")

    render_downloads(state.records)
    render_stats_dashboard(state.records)
    render_results_table(state.records)

    if st.button("Start a new search"):
        reset_search()
        st.rerun()


# --------------------------------------------------------------
# MAIN -- application entry point
# --------------------------------------------------------------

def main():
    """Entry point. Routes between idle, pending, running and finished searches."""
    st.set_page_config(
        page_title=APP_TITLE,
        page_icon=APP_ICON,
        layout="wide",
    )
    configure_logging()

    init_session_state()
    inject_custom_css()

    st.title(APP_TITLE)
    st.caption(
        "Global Manufacturer Discovery & Verification  |  "
        "Deep search across global directories, trade fairs, and local registries"
    )

    state = st.session_state.search_state
    selected_model = render_sidebar(state)

    params = render_search_form(state)
    if params is not None:
        reset_search()
        st.session_state.pending_params = params
        st.session_state.last_params = params
        st.session_state.search_state.start()
        st.rerun()

    pending = st.session_state.pending_params
    if pending is not None:
        st.session_state.pending_params = None
        execute_search(pending, selected_model)
        st.rerun()

    render_results(state)


if __name__ == "__main__":
    main()
