"""
Manufacturer search pipeline
============================
Runs a product/country/industry query against Gemini with Google Search
grounding in three sequential batches:

    1. Global discovery of major manufacturers and exporters
    2. Local-language deep dive into SMEs and industrial zones
    3. Trade fair exhibitor lists and association members

Each batch returns free text that should contain a JSON array of company
records. The array is located and parsed, company names are normalised, and
records already seen in an earlier batch are dropped. Later batches receive
the names found so far as an exclusion list so the model spends its search
budget on new companies instead of re-reporting the same ones.

Error handling is two-tier. A batch whose output cannot be parsed is logged
and contributes nothing; the remaining batches still run. A missing API key
or any failure talking to Gemini aborts the whole run.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI

from config import Settings, get_settings

logger = logging.getLogger(__name__)


# --------------------------------------------------------------
# CONFIGURATION
# --------------------------------------------------------------
MISSING_API_KEY_MESSAGE = "API Key is missing in environment variables"
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred during research."
MIN_NAME_LENGTH = 3                # Normalised names of 2 chars or fewer are noise

INDUSTRIES = [
    "Textiles & Apparel",
    "Consumer Electronics",
    "Industrial Machinery",
    "Automotive Parts",
    "Construction Materials",
    "Food & Beverage",
    "Chemicals",
    "Furniture",
    "Packaging",
    "Medical Devices",
    "Other",
]
EXPORT_CAPABILITIES = ("Yes", "No", "Unknown")

SYSTEM_INSTRUCTION = (
    "You are an INDUSTRIAL-LEVEL AI Manufacturer Researcher.\n"
    "Your mission is to build a COMPLETE and EXHAUSTIVE census of factories.\n\n"
    "RULES:\n"
    "1. Output strictly valid JSON arrays. No intro text.\n"
    "2. Normalize phone numbers to international format.\n"
    "3. 'verification_score' (0-10): Factory signals (machinery, ISO, plant "
    "address) = High score. Trader signals = Low score.\n"
    "4. Do not hallucinate. If data is missing, put \"Not Found\" or empty arrays.\n"
    "5. Prioritize FACTORIES over TRADERS."
)

RECORD_SCHEMA = """Return the result as a JSON array matching this structure:
[{
  "company_name": "string",
  "manufacturer_type": "Factory | Manufacturer | Trader | Unknown",
  "industry": "string",
  "product_category": "string",
  "sub_category": "string",
  "country": "string",
  "city": "string",
  "phone_numbers": [{"number": "string", "type": "sales", "confidence": 0.9}],
  "emails": [{"email": "string", "role": "sales"}],
  "website": "string",
  "certifications": ["string"],
  "export_capability": "Yes | No | Unknown",
  "verification_score": 0.0,
  "data_sources": ["string (url)"],
  "notes": "string (brief summary of findings)"
}]"""


# --------------------------------------------------------------
# ERRORS
# --------------------------------------------------------------

class FactorySearchError(Exception):
    """Base class for errors raised by the search pipeline."""


class ConfigurationError(FactorySearchError):
    """Raised before any network call when required configuration is absent."""


class BatchParseError(FactorySearchError):
    """Raised when a batch response holds no parseable JSON array."""


# --------------------------------------------------------------
# DATA MODEL
# --------------------------------------------------------------

@dataclass(frozen=True)
class SearchParams:
    product: str
    country: str
    industry: str = ""

    def is_complete(self) -> bool:
        return bool(self.product.strip() and self.country.strip())


class SearchStep(str, Enum):
    IDLE = "idle"
    GENERATING_QUERIES = "generating_queries"
    BATCH_1 = "batch_1"
    BATCH_2 = "batch_2"
    BATCH_3 = "batch_3"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STEPS = (SearchStep.COMPLETE, SearchStep.ERROR)


@dataclass
class SearchState:
    """UI-facing state of one search run.

    Transitions go idle -> generating_queries -> batch_1 -> batch_2 ->
    batch_3 -> finalizing and end in complete or error. Records are only
    published on completion.
    """
    is_loading: bool = False
    step: SearchStep = SearchStep.IDLE
    records: list[dict] = field(default_factory=list)
    error: str | None = None

    def start(self) -> None:
        self.is_loading = True
        self.step = SearchStep.GENERATING_QUERIES
        self.records = []
        self.error = None

    def advance(self, step: SearchStep) -> None:
        self.step = SearchStep(step)

    def complete(self, records: list[dict]) -> None:
        self.is_loading = False
        self.step = SearchStep.COMPLETE
        self.records = list(records)
        self.error = None

    def fail(self, message: str) -> None:
        self.is_loading = False
        self.step = SearchStep.ERROR
        self.records = []
        self.error = message or UNEXPECTED_ERROR_MESSAGE


@dataclass
class BatchResponse:
    text: str
    sources: list[str] = field(default_factory=list)


# --------------------------------------------------------------
# QUERY BATCH PLANNER
# --------------------------------------------------------------

@dataclass(frozen=True)
class Batch:
    id: SearchStep
    label: str
    template: str
    uses_exclusions: bool = True


BATCHES = (
    Batch(
        id=SearchStep.BATCH_1,
        label="Major Manufacturers & Exporters",
        template=(
            "PHASE 1: GLOBAL DISCOVERY\n"
            'Find the largest and most prominent manufacturers of "{product}" '
            'in "{country}" (Industry: {industry}).\n\n'
            "Strategy:\n"
            "1. Search English and international directories.\n"
            '2. Look for "Top 20 manufacturers" lists, export data, and major '
            "industrial groups.\n"
            "3. Extract at least 5-8 major companies."
        ),
        uses_exclusions=False,
    ),
    Batch(
        id=SearchStep.BATCH_2,
        label="Local SMEs & Industrial Zones",
        template=(
            "PHASE 2: LOCAL DEEP DIVE\n"
            'Search specifically using LOCAL LANGUAGE keywords for "{product}" '
            'in "{country}".\n\n'
            "Strategy:\n"
            "1. Look for industrial zone lists (IZ), local business registries, "
            "and yellow pages.\n"
            "2. Focus on Small and Medium Enterprises (SMEs) that might not "
            "speak English.\n"
            "3. IGNORE these companies already found: {existing}.\n"
            "4. Find 5-8 NEW companies."
        ),
    ),
    Batch(
        id=SearchStep.BATCH_3,
        label="Trade Fairs & Niche Specialists",
        template=(
            "PHASE 3: NICHE & EXHIBITORS\n"
            "Search for trade fair exhibitor lists (PDFs/Catalogs) and industry "
            'association members for "{industry}" in "{country}".\n\n'
            "Strategy:\n"
            '1. Search for "Exhibitor list", "Member list", "Association of '
            'manufacturers".\n'
            '2. Dig for specialized component manufacturers related to "{product}".\n'
            "3. IGNORE these companies already found: {existing}.\n"
            "4. Find 5-8 NEW companies."
        ),
    ),
)


def build_prompt(batch: Batch, params: SearchParams, exclusions: list[str]) -> str:
    """Render one phase's prompt followed by the JSON output schema.

    The first phase is a cold start and never sees the exclusion list.
    """
    existing = ", ".join(exclusions) if batch.uses_exclusions else ""
    phase_text = batch.template.format(
        product=params.product,
        country=params.country,
        industry=params.industry,
        existing=existing,
    )
    return f"{phase_text}\n\n{RECORD_SCHEMA}"


# --------------------------------------------------------------
# RESPONSE PARSER
# --------------------------------------------------------------
_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")


def extract_json(text: str) -> str:
    """Locate the JSON array inside loosely structured model output.

    Checks for a ```json fenced block first, then the span from the first
    '[' to the last ']'. If neither exists the text is returned untouched and
    json.loads gets to decide.
    """
    match = _FENCED_JSON.search(text)
    if match and match.group(1):
        return match.group(1)

    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end != -1:
        return text[start:end + 1]
    return text


def parse_records(text: str) -> list[dict]:
    """Parse a batch response into company records, preserving model order."""
    try:
        data = json.loads(extract_json(text))
    except (ValueError, RecursionError) as exc:
        raise BatchParseError(f"Response is not valid JSON: {exc}") from exc

    if not isinstance(data, list):
        raise BatchParseError(
            f"Expected a JSON array of companies, got {type(data).__name__}"
        )
    return [item for item in data if isinstance(item, dict)]


# --------------------------------------------------------------
# DEDUPLICATOR / AGGREGATOR
# --------------------------------------------------------------
_LEGAL_SUFFIXES = re.compile(
    r"co\.|ltd\.|inc\.|gmbh|s\.a\.|plc|corp\.|corporation|limited|company"
)
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_name(name) -> str:
    """Reduce a company name to its deduplication key.

    Lower-cases, removes common legal-entity suffixes and punctuation, and
    collapses whitespace. Removing punctuation can expose a new suffix
    ('limi-ted' becomes 'limited'), so both passes repeat until nothing
    changes.
    """
    if not isinstance(name, str):
        name = "" if name is None else str(name)

    current = name.lower()
    while True:
        stripped = _PUNCTUATION.sub("", _LEGAL_SUFFIXES.sub("", current))
        if stripped == current:
            break
        current = stripped
    return " ".join(current.split())


class SearchRun:
    """Accumulator for one search run.

    Holds the set of normalised names seen so far and the retained records in
    first-seen order. A fresh instance is created per run, so nothing leaks
    between searches.
    """

    def __init__(self, fallback_source_limit: int = 3):
        self.fallback_source_limit = fallback_source_limit
        self.found_names: set[str] = set()
        self.ordered_names: list[str] = []
        self.records: list[dict] = []

    def exclusion_list(self, limit: int) -> list[str]:
        return self.ordered_names[:limit]

    def add_batch(self, records: list[dict], sources: list[str]) -> int:
        new_count = 0
        for record in records:
            norm_name = normalize_name(record.get("company_name"))
            if norm_name in self.found_names or len(norm_name) < MIN_NAME_LENGTH:
                continue

            self.found_names.add(norm_name)
            self.ordered_names.append(norm_name)

            # Grounding URLs stand in as provenance only when the model cited nothing
            if not record.get("data_sources"):
                record["data_sources"] = list(sources[:self.fallback_source_limit])

            self.records.append(record)
            new_count += 1
        return new_count


# --------------------------------------------------------------
# SEARCH CLIENT
# --------------------------------------------------------------

def initialise_llm(
    settings: Settings | None = None,
    model_name: str | None = None,
) -> ChatGoogleGenerativeAI:
    """Instantiate the Gemini model, failing fast when no key is configured."""
    settings = settings or get_settings()
    if not settings.google_api_key:
        raise ConfigurationError(MISSING_API_KEY_MESSAGE)

    return ChatGoogleGenerativeAI(
        model=model_name or settings.model,
        google_api_key=settings.google_api_key,
        temperature=settings.temperature,
    )


def extract_grounding_sources(response_metadata: dict) -> list[str]:
    """Pull web source URLs out of Gemini grounding metadata.

    Accepts both the snake_case keys langchain exposes and the camelCase keys
    of the raw REST payload.
    """
    metadata = (
        response_metadata.get("grounding_metadata")
        or response_metadata.get("groundingMetadata")
        or {}
    )
    chunks = metadata.get("grounding_chunks") or metadata.get("groundingChunks") or []

    sources = []
    for chunk in chunks:
        uri = (chunk.get("web") or {}).get("uri")
        if uri and uri not in sources:
            sources.append(uri)
    return sources


def run_search_prompt(llm, prompt_text: str) -> BatchResponse:
    """Send one batch prompt to Gemini with Google Search grounding enabled."""
    prompt = ChatPromptTemplate.from_messages([
        ("system", "{instruction}"),
        ("human", "{request}"),
    ])

    chain = prompt | llm.bind_tools([{"google_search": {}}])
    message = chain.invoke({
        "instruction": SYSTEM_INSTRUCTION,
        "request": prompt_text,
    })

    text = StrOutputParser().invoke(message)
    sources = extract_grounding_sources(getattr(message, "response_metadata", {}) or {})
    return BatchResponse(text=text, sources=sources)


# --------------------------------------------------------------
# ORCHESTRATION
# --------------------------------------------------------------

def search_manufacturers(
    params: SearchParams,
    on_progress: Callable[[SearchStep], None],
    llm=None,
    settings: Settings | None = None,
) -> list[dict]:
    """Run all three batches in order and return the deduplicated records.

    on_progress receives each batch id before its network call and
    'finalizing' once the loop is done.
    """
    settings = settings or get_settings()
    if llm is None:
        llm = initialise_llm(settings)

    run = SearchRun(fallback_source_limit=settings.fallback_source_limit)

    try:
        for batch in BATCHES:
            on_progress(batch.id)

            prompt_text = build_prompt(
                batch, params, run.exclusion_list(settings.exclusion_limit)
            )
            response = run_search_prompt(llm, prompt_text)
            if not response.text:
                logger.info("[%s] Empty response, skipping.", batch.id.value)
                continue

            try:
                records = parse_records(response.text)
            except BatchParseError as exc:
                logger.warning("Failed to parse batch %s: %s", batch.id.value, exc)
                continue

            new_count = run.add_batch(records, response.sources)
            logger.info(
                "[%s] %s: found %d new companies.", batch.id.value, batch.label, new_count
            )

        on_progress(SearchStep.FINALIZING)
        return run.records

    except Exception:
        logger.exception("Gemini API error during manufacturer search")
        raise


def run_search(
    params: SearchParams,
    on_step: Callable[[SearchState], None] | None = None,
    llm=None,
    settings: Settings | None = None,
    state: SearchState | None = None,
) -> SearchState:
    """Drive a SearchState through a full run, notifying on every transition.

    Every failure ends in the error state; callers never see an exception.
    """
    state = state or SearchState()

    def notify():
        if on_step is not None:
            on_step(state)

    state.start()
    notify()

    def on_progress(step: SearchStep):
        state.advance(step)
        notify()

    try:
        records = search_manufacturers(params, on_progress, llm=llm, settings=settings)
    except Exception as exc:
        state.fail(str(exc))
    else:
        state.complete(records)
    notify()
    return state
