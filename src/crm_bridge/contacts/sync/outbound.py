"""Outbound contact sync: push local contacts without a HubSpot id to HubSpot.

Run lifecycle:
1. Authenticate once up front so a missing installation fails fast.
2. Open a sync job ledger entry stamped with the current time.
3. Load the backlog (contacts whose hs_object_id is NULL) as a snapshot.
4. Walk the snapshot in cohorts of at most MAX_BATCH_SIZE, strictly in order:
   - batch-read the cohort's emails to find contacts HubSpot already has
   - batch-create only the net-new contacts
   - write the HubSpot ids back onto the local contacts, by email
5. Close the ledger entry with every cohort's create result and errors. An
   aborted run still closes it, with a final run_aborted error.

Batch read, batch create, and write-back failures are contained per cohort and
reported in the run's errors; the next cohort always runs. Only setup failures
(authentication, ledger, backlog query) and programming errors such as an
oversized cohort abort the run.

Runs are not safe to overlap: two concurrent runs would select the same
backlog and could create duplicates in HubSpot. The HTTP layer allows one at
a time.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

import structlog

from src.crm_bridge.contacts.repository import ContactRepository, SyncJobRepository
from src.crm_bridge.contacts.schemas import (
    BatchCreateResult,
    BatchReadResult,
    CohortError,
    CohortResult,
    OutboundReport,
    OutboundResults,
    RemoteContact,
)
from src.crm_bridge.contacts.sync.batching import MAX_BATCH_SIZE, Cohort, chunked
from src.crm_bridge.contacts.sync.gateway import ContactsApi, HubSpotGateway
from src.crm_bridge.core.errors import (
    ContactStoreError,
    MissingCorrelationKeyError,
    WriteBackError,
)
from src.crm_bridge.core.monitoring import (
    remote_contacts_created_total,
    remote_ids_written_total,
    sync_cohorts_total,
    track_sync_run,
)

logger = structlog.get_logger(__name__)


class OutboundReconciler:
    """Pushes the local backlog to HubSpot cohort by cohort.

    Args:
        contacts: Local contact store.
        sync_jobs: Ledger of outbound runs.
        gateway: Source of authenticated HubSpot clients.
        batch_size: Cohort size, at most MAX_BATCH_SIZE.
    """

    def __init__(
        self,
        contacts: ContactRepository,
        sync_jobs: SyncJobRepository,
        gateway: HubSpotGateway,
        batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}")
        self._contacts = contacts
        self._sync_jobs = sync_jobs
        self._gateway = gateway
        self._batch_size = batch_size

    async def run(self) -> OutboundReport:
        """Execute one outbound sync run and return its aggregated results."""
        async with track_sync_run("outbound"):
            await self._gateway.connect()

            sync_job_id = await self._sync_jobs.create(datetime.now(timezone.utc))
            backlog = await self._contacts.list_missing_remote_id()

            logger.info(
                "outbound.started",
                sync_job_id=sync_job_id,
                backlog=len(backlog),
                batch_size=self._batch_size,
            )

            success: list[dict] = []
            failures: list[dict] = []
            remaining = len(backlog)

            try:
                for number, members in enumerate(chunked(backlog, self._batch_size), start=1):
                    cohort = Cohort(members)
                    result = await self.reconcile_cohort(cohort)
                    remaining -= len(cohort)

                    if result.created is not None:
                        success.append(result.created.model_dump(mode="json"))
                    failures.extend(error.model_dump(mode="json") for error in result.errors)

                    sync_cohorts_total.labels(status="partial" if result.errors else "ok").inc()
                    logger.info(
                        "outbound.cohort_finished",
                        sync_job_id=sync_job_id,
                        cohort=number,
                        size=result.size,
                        created=len(result.created.results) if result.created else 0,
                        written=result.written,
                        errors=len(result.errors),
                        remaining=remaining,
                    )
            except Exception as exc:
                logger.error(
                    "outbound.aborted",
                    sync_job_id=sync_job_id,
                    remaining=remaining,
                    error=str(exc),
                    exc_info=True,
                )
                failures.append(
                    CohortError(stage="run_aborted", message=str(exc)).model_dump(mode="json")
                )
                raise
            finally:
                await self._sync_jobs.complete(sync_job_id, success, failures)

        logger.info(
            "outbound.complete",
            sync_job_id=sync_job_id,
            successes=len(success),
            errors=len(failures),
        )
        return OutboundReport(
            sync_job_id=sync_job_id,
            results=OutboundResults(success=success, errors=failures),
        )

    async def reconcile_cohort(self, cohort: Cohort) -> CohortResult:
        """Read, create, and write back one cohort, collecting its errors."""
        errors: list[CohortError] = []
        api: ContactsApi | None = None
        read = BatchReadResult()

        try:
            api = await self._gateway.connect()
            read = await api.batch_read(cohort.emails)
        except Exception as exc:
            logger.error(
                "outbound.batch_read_failed",
                cohort_size=len(cohort),
                inputs=len(cohort.emails),
                error=str(exc),
                exc_info=True,
            )
            errors.append(CohortError(stage="batch_read", message=str(exc)))

        net_new = cohort.net_new(remote.email for remote in read.results)
        created: BatchCreateResult | None = None

        if not net_new:
            logger.info(
                "outbound.cohort_all_known",
                cohort_size=len(cohort),
                known=len(read.results),
            )
        else:
            created = await self._create(api, cohort, net_new, errors)

        written_from = list(read.results)
        if created is not None:
            written_from.extend(created.results)

        written = 0
        try:
            written = await self.write_back(written_from)
        except WriteBackError as exc:
            logger.error(
                "outbound.write_back_failed",
                cohort_size=len(cohort),
                error=str(exc),
                exc_info=True,
            )
            errors.append(CohortError(stage="write_back", message=str(exc)))

        return CohortResult(
            size=len(cohort),
            read=read,
            created=created,
            errors=errors,
            written=written,
        )

    async def _create(
        self,
        api: ContactsApi | None,
        cohort: Cohort,
        net_new: dict[str, int | None],
        errors: list[CohortError],
    ) -> BatchCreateResult | None:
        inputs = cohort.creation_inputs(net_new)
        logger.info("outbound.batch_create_started", contacts=len(inputs))

        try:
            if api is None:
                api = await self._gateway.connect()
            created = await api.batch_create(inputs)
        except Exception as exc:
            logger.error(
                "outbound.batch_create_failed",
                contacts=len(inputs),
                error=str(exc),
                exc_info=True,
            )
            errors.append(CohortError(stage="batch_create", message=str(exc)))
            return None

        remote_contacts_created_total.inc(len(created.results))
        if created.errors:
            logger.warning(
                "outbound.batch_create_partial",
                created=len(created.results),
                failed=len(created.errors),
            )
            errors.extend(
                CohortError(
                    stage="batch_create_record",
                    message=str(error.get("message", "HubSpot rejected the contact")),
                    details=error,
                )
                for error in created.errors
            )
        else:
            logger.info("outbound.batch_create_complete", created=len(created.results))
        return created

    async def write_back(self, remote_contacts: Sequence[RemoteContact]) -> int:
        """Persist HubSpot ids onto local contacts matched by email.

        Stops at the first failure.

        Raises:
            MissingCorrelationKeyError: A remote contact has no email.
            WriteBackError: The local store rejected an update.
        """
        written = 0
        for remote in remote_contacts:
            email = remote.email
            if not email:
                raise MissingCorrelationKeyError(remote.id)
            try:
                await self._contacts.update_remote_id(email, remote.id)
            except ContactStoreError as exc:
                raise WriteBackError(
                    f"Encountered an issue saving HubSpot id {remote.id} for {email}: {exc}"
                ) from exc
            written += 1
            remote_ids_written_total.inc()

        if written:
            logger.info("outbound.write_back_complete", written=written)
        return written
