"""The scheduler entry point maps ingestion outcomes to exit codes."""

import importlib.util
from pathlib import Path

import pytest

from app.core.errors import FeedFetchError, StoreError

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "ingest_firms.py"


@pytest.fixture
def script():
    spec = importlib.util.spec_from_file_location("ingest_firms", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_success_exits_zero(script, monkeypatch, capsys):
    seen = {}

    async def fake_run(args):
        seen["args"] = args
        return 7

    monkeypatch.setattr(script, "run", fake_run)

    assert script.main(["--area", "NPL", "--days", "2", "--deterministic-ids"]) == 0
    assert "ingested 7 events" in capsys.readouterr().out
    assert seen["args"].area == "NPL"
    assert seen["args"].days == 2
    assert seen["args"].deterministic_ids is True


@pytest.mark.parametrize("error", [FeedFetchError("feed down"), StoreError("insert failed")])
def test_failure_exits_one(script, monkeypatch, capsys, error):
    async def fake_run(args):
        raise error

    monkeypatch.setattr(script, "run", fake_run)

    assert script.main([]) == 1
    assert "ingestion failed" in capsys.readouterr().err


def test_build_store_without_credentials_is_demo(script, monkeypatch):
    monkeypatch.setattr(script.settings, "supabase_url", None)
    assert script.build_store().name == "demo"
