"""
Tests for the command line entry points.
"""

from unittest import mock

import pytest
from typer.testing import CliRunner

import main
from db_models import Company, Job
from db_service import Repositories
from models import RunStats
from pipeline import parse_stats_marker
from repositories import InMemoryAiRunLedgerRepository, InMemoryCompanyRepository, InMemoryJobRepository

runner = CliRunner()


@pytest.fixture
def repos(monkeypatch):
    repos = Repositories(InMemoryCompanyRepository(), InMemoryJobRepository(), InMemoryAiRunLedgerRepository())
    monkeypatch.setattr(main, "build_repositories", lambda: repos)
    return repos


def test_scrape_prints_stats_marker(repos):
    async def fake_scrape(mode, engine, companies, board_sources):
        assert mode == "boards"
        return RunStats(jobs_added=2, failures=1, failed_sources=["board:remotive"])

    with mock.patch("main.scrape_stage", side_effect=fake_scrape):
        result = runner.invoke(main.app, ["scrape", "--mode", "boards"])

    assert result.exit_code == 0
    stats = parse_stats_marker(result.output)
    assert stats.jobs_added == 2
    assert stats.failed_sources == ["board:remotive"]


def test_scrape_failure_exits_nonzero(repos):
    with mock.patch("main.scrape_stage", side_effect=RuntimeError("database down")):
        result = runner.invoke(main.app, ["scrape"])
    assert result.exit_code == 1
    assert "SCRAPE_STATS" not in result.output


def test_unknown_mode_is_rejected(repos):
    result = runner.invoke(main.app, ["scrape", "--mode", "everything"])
    assert result.exit_code == 2


def test_expire(repos):
    result = runner.invoke(main.app, ["expire"])
    assert result.exit_code == 0
    assert "Expired 0 jobs." in result.output


def test_repair_locations(repos):
    company = repos.companies.create(Company(name="Acme", slug="acme"))
    repos.jobs.insert(Job(
        company_id=company.id, source="ats:lever", external_id="1", hash="h",
        title="Engineer", location_raw="London (Remote)",
    ))
    result = runner.invoke(main.app, ["repair-locations"])
    assert result.exit_code == 0
    assert "Patched 1 jobs." in result.output


def test_pipeline_reports_failure(repos):
    async def failing(run_id, mode):
        return main.run_tracker.fail_run(run_id, "scrape exploded")

    with mock.patch("main.run_pipeline", side_effect=failing):
        result = runner.invoke(main.app, ["pipeline", "--mode", "ats"])
    assert result.exit_code == 1
    assert '"status":"failed"' in result.output
