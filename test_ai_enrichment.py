"""
Tests for the AI enrichment batch and its daily budget.
"""

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest import mock

import httpx
import openai
import pytest
from tenacity import wait_none

from ai_enrichment import AiEnricher, MAX_DESCRIPTION_CHARS, build_user_prompt, parse_enrichment_output
from db_models import Company, Job
from errors import InvalidEnrichmentOutput
from repositories import InMemoryAiRunLedgerRepository, InMemoryCompanyRepository, InMemoryJobRepository

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

VALID = json.dumps({
    "oneLiner": "Builds payment APIs for merchants",
    "snippet": "Own the backend services that move money for thousands of merchants.",
    "bullets": ["Design and ship public APIs", "Share the on-call rotation"],
})


def completion(content, prompt_tokens=100, completion_tokens=50):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.example.com/chat/completions"))


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def company():
    return Company(name="Acme", slug="acme")


@pytest.fixture
def companies(company):
    return InMemoryCompanyRepository([company])


@pytest.fixture
def jobs(company):
    repo = InMemoryJobRepository()
    for n in range(3):
        repo.insert(Job(
            company_id=company.id,
            source="ats:greenhouse",
            external_id=str(n),
            hash=f"hash-{n}",
            title=f"Backend Engineer {n}",
            description_html="<p>Build and run payment services.</p>",
            created_at=T0 - timedelta(days=3 - n),
        ))
    return repo


@pytest.fixture
def ledger():
    return InMemoryAiRunLedgerRepository()


@pytest.fixture
def client():
    return mock.Mock()


def make_enricher(jobs, ledger, client, clock, companies=None, **caps):
    return AiEnricher(
        jobs,
        ledger,
        companies=companies,
        client=client,
        model="test-model",
        clock=clock,
        retry_wait=wait_none(),
        **caps,
    )


class TestParseEnrichmentOutput:

    def test_valid(self):
        output = parse_enrichment_output(VALID)
        assert output.one_liner == "Builds payment APIs for merchants"
        assert len(output.bullets) == 2

    def test_fenced_json(self):
        assert parse_enrichment_output(f"```json\n{VALID}\n```").snippet.startswith("Own the backend")

    @pytest.mark.parametrize("content", [
        None,
        "",
        "Sure! Here is your summary.",
        "[1, 2]",
        json.dumps({"oneLiner": "Short", "snippet": "x" * 40, "bullets": ["a", "b"]}),
        json.dumps({"oneLiner": "A perfectly fine one-liner", "snippet": "x" * 40, "bullets": ["only one"]}),
    ])
    def test_invalid(self, content):
        with pytest.raises(InvalidEnrichmentOutput):
            parse_enrichment_output(content)


class TestBuildUserPrompt:

    def test_prompt_contents(self, company):
        job = Job(
            company_id=company.id,
            source="ats:lever",
            external_id="1",
            hash="h",
            title="Designer",
            is_remote=True,
            description_html="<p>" + "a" * (MAX_DESCRIPTION_CHARS + 500) + "</p>",
        )
        payload = json.loads(build_user_prompt(job, "Acme"))
        assert payload["job"]["company"] == "Acme"
        assert payload["job"]["location"] == "Remote"
        assert len(payload["job"]["description"]) == MAX_DESCRIPTION_CHARS


class TestAiEnricherRun:

    def test_enriches_all_candidates(self, jobs, ledger, client, clock, companies):
        client.chat.completions.create.return_value = completion(VALID)
        summary = make_enricher(jobs, ledger, client, clock, companies=companies).run()

        assert summary.processed == 3
        assert summary.failed == 0
        assert (summary.tokens_in, summary.tokens_out) == (300, 150)
        assert summary.stopped_reason is None

        usage = ledger.get(T0.date())
        assert usage.jobs_processed == 3
        assert usage.tokens_total == 450

        enriched = jobs.all()[0]
        assert enriched.ai_one_liner == "Builds payment APIs for merchants"
        assert enriched.ai_summary_json["oneLiner"] == enriched.ai_one_liner
        assert enriched.ai_enriched_at == T0

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0]["role"] == "system"
        assert '"company": "Acme"' in kwargs["messages"][1]["content"]

    def test_invalid_output_is_retried(self, jobs, ledger, client, clock):
        client.chat.completions.create.side_effect = [
            completion("not json"),
            completion(VALID),
            completion(VALID),
            completion(VALID),
        ]
        summary = make_enricher(jobs, ledger, client, clock).run()

        assert summary.processed == 3
        assert client.chat.completions.create.call_count == 4
        # The rejected completion still cost tokens
        assert ledger.get(T0.date()).tokens_in == 400

    def test_transient_provider_error_is_retried(self, jobs, ledger, client, clock):
        client.chat.completions.create.side_effect = [connection_error()] + [completion(VALID)] * 3
        summary = make_enricher(jobs, ledger, client, clock).run()
        assert summary.processed == 3
        assert summary.failed == 0

    def test_failed_job_does_not_abort_run(self, jobs, ledger, client, clock):
        client.chat.completions.create.side_effect = [
            completion("nope"),
            completion("still nope"),
            completion(VALID),
            completion(VALID),
        ]
        summary = make_enricher(jobs, ledger, client, clock, attempts=2).run()

        assert summary.failed == 1
        assert summary.processed == 2
        assert [j.ai_one_liner is None for j in sorted(jobs.all(), key=lambda j: j.external_id)] == [True, False, False]

    def test_daily_job_cap_stops_and_resumes_next_day(self, jobs, ledger, client, clock):
        client.chat.completions.create.return_value = completion(VALID)

        first = make_enricher(jobs, ledger, client, clock, max_daily_jobs=2).run()
        assert first.processed == 2
        assert first.stopped_reason == "max_daily_jobs"
        assert first.skipped == 1

        again = make_enricher(jobs, ledger, client, clock, max_daily_jobs=2).run()
        assert again.processed == 0
        assert again.stopped_reason == "max_daily_jobs"

        clock.now = T0 + timedelta(days=1)
        next_day = make_enricher(jobs, ledger, client, clock, max_daily_jobs=2).run()
        assert next_day.processed == 1
        assert next_day.stopped_reason is None
        assert ledger.get(T0.date()).jobs_processed == 2
        assert ledger.get((T0 + timedelta(days=1)).date()).jobs_processed == 1

    def test_token_cap_reached_before_any_call(self, jobs, ledger, client, clock):
        ledger.increment(T0.date(), tokens_in=1000)
        summary = make_enricher(jobs, ledger, client, clock, max_daily_tokens=1000).run()

        assert summary.processed == 0
        assert summary.skipped == 3
        assert summary.stopped_reason == "max_daily_tokens"
        client.chat.completions.create.assert_not_called()

    def test_usd_cap(self, jobs, ledger, client, clock):
        ledger.increment(T0.date(), tokens_in=1000, tokens_out=1000)
        summary = make_enricher(jobs, ledger, client, clock, max_daily_usd=0.0001).run()
        assert summary.stopped_reason == "max_daily_usd"
        client.chat.completions.create.assert_not_called()

    def test_nothing_to_do(self, ledger, client, clock):
        summary = make_enricher(InMemoryJobRepository(), ledger, client, clock).run()
        assert summary.processed == 0
        assert ledger.get(T0.date()) is None

    def test_candidates_are_oldest_first(self, jobs, ledger, client, clock, company):
        jobs.insert(Job(
            company_id=company.id,
            source="ats:greenhouse",
            external_id="ancient",
            hash="hash-ancient",
            title="Data Engineer",
            created_at=T0 - timedelta(days=30),
        ))
        client.chat.completions.create.return_value = completion(VALID)
        make_enricher(jobs, ledger, client, clock, max_jobs_per_run=1).run()

        enriched = [j.external_id for j in jobs.all() if j.ai_one_liner]
        assert enriched == ["ancient"]
