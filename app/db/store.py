"""Unit of work: one transaction spanning every repository.

WHY A UNIT OF WORK
-------------------
Confirming an enrollment touches four tables: the enrollment row, the
batch seat counter, the enrollment-code counter and the module progress
rows.  Either all of them change or none of them do.  A half-applied
confirmation (enrollment active, counter not incremented) is exactly the
kind of drift this service exists to prevent.

So services never talk to a repository directly.  They open a
transaction, receive a ``Repos`` bundle bound to it, and every write
made through that bundle commits or rolls back together::

    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        ...

TWO BACKENDS
-------------
  SqlStore:       one AsyncSession per transaction, ``session.begin()``
                  commits on success and rolls back on exception.
                  Row-level races are settled by conditional UPDATEs in
                  the Pg repos.
  InMemoryStore:  for tests and local dev.  A single asyncio.Lock
                  serializes writers, and a snapshot of every repo's
                  state is restored if the block raises.

Transactions do not nest.  Service helpers that need to run inside an
existing transaction take the ``Repos`` bundle as their first argument.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, fields
from typing import Protocol, runtime_checkable

from app.db.engine import async_session_factory
from app.repos.batch_repo import BatchRepo, InMemoryBatchRepo
from app.repos.catalog_repo import CatalogRepo, InMemoryCatalogRepo
from app.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from app.repos.counter_repo import CounterRepo, InMemoryCounterRepo
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.payment_repo import InMemoryPaymentRepo, PaymentRepo
from app.repos.pg_batch_repo import PgBatchRepo
from app.repos.pg_catalog_repo import PgCatalogRepo
from app.repos.pg_certificate_repo import PgCertificateRepo
from app.repos.pg_counter_repo import PgCounterRepo
from app.repos.pg_enrollment_repo import PgEnrollmentRepo
from app.repos.pg_payment_repo import PgPaymentRepo
from app.repos.pg_profile_repo import PgProfileRepo
from app.repos.pg_progress_repo import PgProgressRepo
from app.repos.profile_repo import InMemoryProfileRepo, ProfileRepo
from app.repos.progress_repo import InMemoryProgressRepo, ProgressRepo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Repos:
    """Every repository, bound to one transaction."""

    batches: BatchRepo
    enrollments: EnrollmentRepo
    payments: PaymentRepo
    progress: ProgressRepo
    catalog: CatalogRepo
    counters: CounterRepo
    profiles: ProfileRepo
    certificates: CertificateRepo


@runtime_checkable
class Store(Protocol):
    def transaction(self) -> AsyncIterator[Repos]: ...


class InMemoryStore:
    """Process-local store for tests and local dev (no Postgres needed)."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._repos = _fresh_in_memory_repos()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Repos]:
        async with self._lock:
            # Domain objects are frozen, so copying each container is enough.
            snapshot = {
                f.name: {
                    key: copy.copy(value)
                    for key, value in vars(getattr(self._repos, f.name)).items()
                }
                for f in fields(Repos)
            }
            try:
                yield self._repos
            except BaseException:
                logger.debug("In-memory transaction rolled back")
                # roll back every repo to its state at transaction start
                for name, state in snapshot.items():
                    repo = getattr(self._repos, name)
                    vars(repo).clear()
                    vars(repo).update(state)
                raise

    def reset(self) -> None:
        """Drop all data.  Tests call this between cases."""
        self._lock = asyncio.Lock()
        self._repos = _fresh_in_memory_repos()


class SqlStore:
    """PostgreSQL-backed store: one session and one transaction per block."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Repos]:
        async with self._session_factory() as session, session.begin():
            yield Repos(
                batches=PgBatchRepo(session),
                enrollments=PgEnrollmentRepo(session),
                payments=PgPaymentRepo(session),
                progress=PgProgressRepo(session),
                catalog=PgCatalogRepo(session),
                counters=PgCounterRepo(session),
                profiles=PgProfileRepo(session),
                certificates=PgCertificateRepo(session),
            )


def _fresh_in_memory_repos() -> Repos:
    return Repos(
        batches=InMemoryBatchRepo(),
        enrollments=InMemoryEnrollmentRepo(),
        payments=InMemoryPaymentRepo(),
        progress=InMemoryProgressRepo(),
        catalog=InMemoryCatalogRepo(),
        counters=InMemoryCounterRepo(),
        profiles=InMemoryProfileRepo(),
        certificates=InMemoryCertificateRepo(),
    )


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    store: Store = SqlStore(async_session_factory)
else:
    store = InMemoryStore()
