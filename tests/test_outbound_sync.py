"""Tests for the outbound reconciler (local contacts -> HubSpot).

Uses InMemoryContactRepository, InMemorySyncJobRepository and a scripted
FakeContactsApi; no database or HubSpot calls.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.crm_bridge.contacts.schemas import RemoteContact
from src.crm_bridge.contacts.sync.batching import Cohort
from src.crm_bridge.contacts.sync.outbound import OutboundReconciler
from src.crm_bridge.core.errors import (
    AuthorizationRequiredError,
    MissingCorrelationKeyError,
    WriteBackError,
)


def _seed_backlog(repo, count: int) -> list:
    return [
        repo.add(email=f"user{i}@example.com", first_name=f"First{i}", last_name="Doe")
        for i in range(1, count + 1)
    ]


@pytest.fixture
def reconciler(contact_repo, sync_job_repo, gateway) -> OutboundReconciler:
    return OutboundReconciler(contact_repo, sync_job_repo, gateway)


# ── Full Runs ────────────────────────────────────────────────────────────────


class TestOutboundRun:
    async def test_150_contacts_two_cohorts(self, reconciler, contact_repo, sync_job_repo, hubspot):
        """150 unknown contacts: 100 + 50 cohorts, every contact gets an id."""
        _seed_backlog(contact_repo, 150)

        report = await reconciler.run()

        assert [len(call) for call in hubspot.create_calls] == [100, 50]
        assert await contact_repo.list_missing_remote_id() == []
        for contact in await contact_repo.list_contacts():
            assert contact.hs_object_id == hubspot.remote[contact.email].id

        job = sync_job_repo.jobs[report.sync_job_id]
        assert len(job["success"]) == 2
        assert job["failures"] == []
        assert job["execution_time"].tzinfo is not None
        assert report.results.success == job["success"]
        assert report.results.errors == []

    async def test_known_contacts_are_not_recreated(self, reconciler, contact_repo, hubspot):
        """10 contacts, 4 already in HubSpot: 6 creates, 10 write-backs."""
        contacts = _seed_backlog(contact_repo, 10)
        known = {c.email: hubspot.seed(c.email) for c in contacts[:4]}

        await reconciler.run()

        assert len(hubspot.create_calls) == 1
        created_emails = [i["email"] for i in hubspot.create_calls[0]]
        assert len(created_emails) == 6
        assert not set(created_emails) & set(known)

        assert len(contact_repo.update_calls) == 10
        for email, remote in known.items():
            assert contact_repo.by_email(email).hs_object_id == remote.id
        assert await contact_repo.list_missing_remote_id() == []

    async def test_created_ids_are_written_back(self, reconciler, contact_repo, hubspot):
        _seed_backlog(contact_repo, 5)

        report = await reconciler.run()

        created = report.results.success[0]["results"]
        assert len(created) == 5
        for record in created:
            local = contact_repo.by_email(record["properties"]["email"])
            assert local.hs_object_id == record["id"]

    async def test_second_run_creates_nothing(self, reconciler, contact_repo, sync_job_repo, hubspot):
        _seed_backlog(contact_repo, 30)

        await reconciler.run()
        creates_after_first = len(hubspot.create_calls)
        second = await reconciler.run()

        assert len(hubspot.create_calls) == creates_after_first
        assert second.results.success == []
        assert second.results.errors == []
        assert len(sync_job_repo.jobs) == 2

    async def test_empty_backlog_still_records_job(self, reconciler, sync_job_repo, hubspot):
        report = await reconciler.run()

        assert hubspot.read_calls == []
        assert sync_job_repo.jobs[report.sync_job_id]["success"] == []
        assert sync_job_repo.jobs[report.sync_job_id]["failures"] == []

    async def test_all_known_cohort_skips_create(self, reconciler, contact_repo, hubspot):
        for contact in _seed_backlog(contact_repo, 3):
            hubspot.seed(contact.email)

        report = await reconciler.run()

        assert hubspot.create_calls == []
        assert report.results.success == []
        assert await contact_repo.list_missing_remote_id() == []

    async def test_known_contact_with_mixed_case_email_is_not_recreated(
        self, reconciler, contact_repo, sync_job_repo, hubspot
    ):
        """HubSpot stores alice@x.com; the local Alice@X.com is the same contact."""
        alice = contact_repo.add(email="Alice@X.com", first_name="Alice")
        contact_repo.add(email="bob@x.com", first_name="Bob")
        known = hubspot.seed("alice@x.com")

        report = await reconciler.run()

        assert [[i["email"] for i in call] for call in hubspot.create_calls] == [["bob@x.com"]]
        assert report.results.errors == []
        assert sync_job_repo.jobs[report.sync_job_id]["failures"] == []
        assert contact_repo.get(alice.id).hs_object_id == known.id
        assert await contact_repo.list_missing_remote_id() == []

    async def test_authorization_failure_aborts_before_ledger(
        self, reconciler, contact_repo, sync_job_repo, gateway
    ):
        _seed_backlog(contact_repo, 2)
        gateway.error = AuthorizationRequiredError("1")

        with pytest.raises(AuthorizationRequiredError):
            await reconciler.run()
        assert sync_job_repo.jobs == {}

    async def test_aborted_run_still_closes_ledger(self, reconciler, contact_repo, sync_job_repo):
        _seed_backlog(contact_repo, 3)
        contact_repo.update_remote_id = AsyncMock(side_effect=RuntimeError("connection reset"))

        with pytest.raises(RuntimeError):
            await reconciler.run()

        job = sync_job_repo.jobs[1]
        assert job["success"] == []
        assert job["failures"] == [
            {"stage": "run_aborted", "message": "connection reset", "details": {}}
        ]

    def test_batch_size_above_limit_rejected(self, contact_repo, sync_job_repo, gateway):
        with pytest.raises(ValueError):
            OutboundReconciler(contact_repo, sync_job_repo, gateway, batch_size=101)


# ── Partial Failures ─────────────────────────────────────────────────────────


class TestPartialFailures:
    async def test_partial_batch_create(self, reconciler, contact_repo, hubspot):
        """3 successes and 2 record errors: 3 write-backs, 2 aggregate errors."""
        contacts = _seed_backlog(contact_repo, 5)
        hubspot.reject_emails = {contacts[1].email, contacts[3].email}

        report = await reconciler.run()

        assert len(contact_repo.update_calls) == 3
        assert len(report.results.errors) == 2
        assert {e["stage"] for e in report.results.errors} == {"batch_create_record"}
        assert report.results.errors[0]["details"]["category"] == "VALIDATION_ERROR"
        remaining = {c.email for c in await contact_repo.list_missing_remote_id()}
        assert remaining == {contacts[1].email, contacts[3].email}

    async def test_batch_create_exception_does_not_stop_next_cohort(
        self, contact_repo, sync_job_repo, gateway, hubspot
    ):
        _seed_backlog(contact_repo, 4)
        hubspot.fail_create_calls = {1}
        reconciler = OutboundReconciler(contact_repo, sync_job_repo, gateway, batch_size=2)

        report = await reconciler.run()

        assert len(hubspot.create_calls) == 2
        assert len(report.results.success) == 1
        assert len(report.results.errors) == 1
        assert report.results.errors[0]["stage"] == "batch_create"
        remaining = [c.email for c in await contact_repo.list_missing_remote_id()]
        assert remaining == ["user1@example.com", "user2@example.com"]

    async def test_batch_read_failure_proceeds_with_empty_read(self, reconciler, contact_repo, hubspot):
        _seed_backlog(contact_repo, 3)
        hubspot.fail_read_calls = {1}

        report = await reconciler.run()

        assert [e["stage"] for e in report.results.errors] == ["batch_read"]
        assert len(hubspot.create_calls[0]) == 3
        assert await contact_repo.list_missing_remote_id() == []

    async def test_contacts_without_email_stay_in_backlog(self, reconciler, contact_repo, hubspot):
        contact_repo.add(email=None, first_name="Anonymous")
        contact_repo.add(email="named@x.com", first_name="Named")

        await reconciler.run()

        assert hubspot.read_calls == [["named@x.com"]]
        assert [c.first_name for c in await contact_repo.list_missing_remote_id()] == ["Anonymous"]


# ── Cohort Reconciliation ────────────────────────────────────────────────────


class TestReconcileCohort:
    async def test_write_back_error_recorded_against_cohort(self, reconciler, contact_repo, hubspot):
        contacts = _seed_backlog(contact_repo, 2)
        hubspot.seed("ghost@example.com")
        cohort = Cohort(contacts + [contacts[0].model_copy(update={"id": 99, "email": "ghost@example.com"})])

        result = await reconciler.reconcile_cohort(cohort)

        assert result.created is not None
        assert [e.stage for e in result.errors] == ["write_back"]
        assert "ghost@example.com" in result.errors[0].message

    async def test_write_back_requires_email(self, reconciler):
        with pytest.raises(MissingCorrelationKeyError):
            await reconciler.write_back([RemoteContact(id="77", properties={"firstname": "NoMail"})])

    async def test_write_back_wraps_store_errors(self, reconciler):
        with pytest.raises(WriteBackError) as exc_info:
            await reconciler.write_back(
                [RemoteContact(id="12", properties={"email": "missing@x.com"})]
            )
        assert "12" in str(exc_info.value)
