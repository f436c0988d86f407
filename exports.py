"""Summary statistics and file exports for manufacturer search results."""

import json
from datetime import date

from fpdf import FPDF

CSV_FILE_NAME = "factory_find_results.csv"
JSON_FILE_NAME = "factory_find_results.json"
PDF_FILE_NAME = "factory_find_results.pdf"
CSV_HEADERS = ["Company", "Type", "Country", "City", "Phone", "Email", "Website", "Score", "Notes"]

FACTORY_TYPES = ("Factory", "Manufacturer")
SCORE_RANGES = [
    # (label, lower bound inclusive); upper bound is the next range's lower bound
    ("High (8-10)", 8.0),
    ("Med (5-7.9)", 5.0),
    ("Low (0-4.9)", 0.0),
]


# --------------------------------------------------------------
# SCORING & STATISTICS
# --------------------------------------------------------------

def coerce_score(value) -> float:
    """Best-effort float for a model-supplied verification score."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def score_tier(score) -> str:
    """Map a verification score onto the three badge colours."""
    score = coerce_score(score)
    if score >= 8:
        return "green"
    if score >= 5:
        return "yellow"
    return "red"


def is_factory(manufacturer_type) -> bool:
    lower = str(manufacturer_type or "").lower()
    return "factory" in lower or "manufacturer" in lower


def type_distribution(records: list[dict]) -> dict[str, int]:
    """Count records as 'Factory' (Factory or Manufacturer) versus 'Trader/Other'."""
    counts: dict[str, int] = {}
    for record in records:
        key = "Factory" if record.get("manufacturer_type") in FACTORY_TYPES else "Trader/Other"
        counts[key] = counts.get(key, 0) + 1
    return counts


def score_distribution(records: list[dict]) -> list[dict]:
    """Histogram of verification scores over the High / Med / Low ranges.

    Scores outside 0-10 are not counted.
    """
    buckets = [{"name": label, "count": 0} for label, _ in SCORE_RANGES]
    for record in records:
        score = coerce_score(record.get("verification_score"))
        if not 0 <= score <= 10:
            continue
        for bucket, (_, lower) in zip(buckets, SCORE_RANGES):
            if score >= lower:
                bucket["count"] += 1
                break
    return buckets


# --------------------------------------------------------------
# CSV / JSON EXPORT
# --------------------------------------------------------------

def _first(items, key: str) -> str:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return str(items[0].get(key) or "")
    return ""


def _quote(value) -> str:
    text = "" if value is None else str(value)
    return '"' + text.replace('"', '""') + '"'


def _csv_field(value) -> str:
    text = "" if value is None else str(value)
    if any(ch in text for ch in (",", '"', "\n", "\r")):
        return _quote(text)
    return text


def records_to_csv(records: list[dict]) -> str:
    """Render records as CSV with the fixed nine-column header.

    Company name and notes are always quoted; only the first phone number and
    first email of each record are exported.
    """
    lines = [",".join(CSV_HEADERS)]
    for record in records:
        row = [
            _quote(record.get("company_name")),
            _csv_field(record.get("manufacturer_type")),
            _csv_field(record.get("country")),
            _csv_field(record.get("city")),
            _csv_field(_first(record.get("phone_numbers"), "number")),
            _csv_field(_first(record.get("emails"), "email")),
            _csv_field(record.get("website")),
            _csv_field(record.get("verification_score")),
            _quote(record.get("notes")),
        ]
        lines.append(",".join(row))
    return "\n".join(lines)


def records_to_json(records: list[dict]) -> str:
    return json.dumps(records, indent=2, ensure_ascii=False)


# --------------------------------------------------------------
# PDF EXPORT
# --------------------------------------------------------------

def sanitise_for_pdf(text) -> str:
    """Replace characters that fall outside the latin-1 character set.

    fpdf2's built-in Helvetica font only covers latin-1. Company names and
    notes in local languages are replaced with '?' rather than crashing the
    export.
    """
    text = "" if text is None else str(text)
    replacements = {
        "\u2013": "-",    # en-dash
        "\u2014": " - ",  # em-dash
        "\u2018": "'",    # left single quote
        "\u2019": "'",    # right single quote
        "\u201c": '"',    # left double quote
        "\u201d": '"',    # right double quote
        "\u2026": "...",  # ellipsis
        "\u00a0": " ",    # non-breaking space
        "\u2022": "-",    # bullet
    }
    for char, replacement in replacements.items():
        text = text.replace(char, replacement)
    return text.encode("latin-1", errors="replace").decode("latin-1")


def records_to_pdf(records: list[dict], title: str = "Manufacturer Research Results") -> bytes:
    """Generate a printable summary with one block per company."""
    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=20)
    pdf.add_page()

    today_str = date.today().strftime("%B %d, %Y")

    pdf.set_font("Helvetica", "B", 20)
    pdf.set_text_color(67, 56, 202)
    pdf.cell(0, 12, text=sanitise_for_pdf(title), new_x="LMARGIN", new_y="NEXT", align="C")

    pdf.set_font("Helvetica", "", 10)
    pdf.set_text_color(100, 100, 100)
    pdf.cell(
        0, 7,
        text=f"{len(records)} companies  |  {today_str}",
        new_x="LMARGIN", new_y="NEXT", align="C",
    )
    pdf.ln(4)

    for i, record in enumerate(records, 1):
        pdf.set_font("Helvetica", "B", 12)
        pdf.set_text_color(30, 30, 30)
        name = sanitise_for_pdf(record.get("company_name") or "Unnamed company")
        pdf.multi_cell(0, 7, text=f"{i}. {name}", new_x="LMARGIN", new_y="NEXT")

        location = ", ".join(
            str(part) for part in (record.get("city"), record.get("country")) if part
        )
        details = [
            f"Type: {record.get('manufacturer_type') or 'Unknown'}",
            f"Score: {coerce_score(record.get('verification_score')):.1f}/10",
            f"Export: {record.get('export_capability') or 'Unknown'}",
        ]
        if location:
            details.append(f"Location: {location}")

        pdf.set_font("Helvetica", "", 9)
        pdf.set_text_color(60, 60, 60)
        pdf.multi_cell(0, 5, text=sanitise_for_pdf("  |  ".join(details)), new_x="LMARGIN", new_y="NEXT")

        contact = [c for c in (
            _first(record.get("phone_numbers"), "number"),
            _first(record.get("emails"), "email"),
            record.get("website") or "",
        ) if c]
        if contact:
            pdf.multi_cell(0, 5, text=sanitise_for_pdf("  |  ".join(contact)), new_x="LMARGIN", new_y="NEXT")

        if record.get("notes"):
            pdf.set_font("Helvetica", "I", 9)
            pdf.multi_cell(0, 5, text=sanitise_for_pdf(record["notes"]), new_x="LMARGIN", new_y="NEXT")

        sources = record.get("data_sources") or []
        if isinstance(sources, list) and sources:
            pdf.set_font("Helvetica", "", 8)
            pdf.set_text_color(120, 120, 120)
            for url in sources[:3]:
                pdf.multi_cell(0, 4, text=sanitise_for_pdf(url), new_x="LMARGIN", new_y="NEXT")

        pdf.ln(3)

    pdf.set_font("Helvetica", "I", 8)
    pdf.set_text_color(150, 150, 150)
    pdf.cell(
        0, 5,
        text="Generated by FactoryFind | Data sourced via Google Search grounding",
        new_x="LMARGIN", new_y="NEXT", align="C",
    )
    return bytes(pdf.output())
