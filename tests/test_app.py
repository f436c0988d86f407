from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

import app
from factory_search import MISSING_API_KEY_MESSAGE

APP_PATH = str(Path(__file__).resolve().parents[1] / "app.py")


def test_app_renders_search_form(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "test-key")

    at = AppTest.from_file(APP_PATH, default_timeout=30)
    at.run()

    assert not at.exception
    assert at.title[0].value == app.APP_TITLE
    assert [t.label for t in at.text_input] == ["Product Name", "Target Country"]
    assert len(at.error) == 0


def test_search_without_api_key_shows_error(monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)

    at = AppTest.from_file(APP_PATH, default_timeout=30)
    at.run()
    at.text_input[0].input("T-Shirts")
    at.text_input[1].input("Vietnam")
    at.button[0].click()
    at.run()

    assert not at.exception
    assert at.error[0].value == MISSING_API_KEY_MESSAGE


def test_describe_api_error_hints():
    assert "GOOGLE_API_KEY" in app.describe_api_error(MISSING_API_KEY_MESSAGE)
    assert "quotas" in app.describe_api_error("429 RESOURCE_EXHAUSTED")
    assert app.describe_api_error("something odd") == ""


def test_escape_markdown_neutralises_model_names():
    assert app.escape_markdown("*Best* [Factory]_Ltd") == r"\*Best\* \[Factory\]\_Ltd"
    assert app.escape_markdown(None) == ""


@pytest.mark.parametrize("capability, shown", [
    ("Yes", "Yes"), ("No", "No"), ("Maybe", "Unknown"), (None, "Unknown"),
])
def test_export_cell_only_shows_known_capabilities(capability, shown):
    cell = app.render_export_cell({"export_capability": capability})
    assert cell.endswith(f" {shown}")
