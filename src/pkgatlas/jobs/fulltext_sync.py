"""Wholesale rebuild of the external full-text index."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from pkgatlas.catalog.store import PackageStore
from pkgatlas.core.errors import FullTextError
from pkgatlas.search.fulltext import FullTextIndex, SyncReport

log = structlog.get_logger()


@dataclass
class FullTextSyncStats:
    report: SyncReport
    waited: bool = False
    index_stats: dict[str, Any] = field(default_factory=dict)


async def sync_fulltext(
    store: PackageStore,
    index: FullTextIndex,
    *,
    wait: bool = False,
) -> FullTextSyncStats:
    """Configure the index, then replace its contents with the catalog.

    With ``wait`` the job blocks until every queued task has finished, so
    the returned index stats reflect the new documents.

    Raises:
        FullTextError: the service could not be configured, a request
            failed, or (with ``wait``) a queued task failed.
    """
    if not await index.initialize():
        raise FullTextError.unavailable(index.host, "index initialization failed")

    records = await store.list_packages()
    report = await index.sync(records)

    if wait:
        for task_uid in report.task_uids:
            if task_uid >= 0:
                await index.wait_for_task(task_uid)

    index_stats = await index.stats()
    log.info(
        "fulltext.job_completed",
        queued=report.queued,
        skipped=report.skipped,
        documents=index_stats.get("numberOfDocuments"),
        is_indexing=index_stats.get("isIndexing"),
    )
    return FullTextSyncStats(report=report, waited=wait, index_stats=index_stats)
