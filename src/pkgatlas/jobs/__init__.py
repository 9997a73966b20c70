"""Out-of-band batch jobs that (re)populate derived search state.

Neither job runs on write. A package imported into the catalog becomes
searchable semantically only after `generate_embeddings` and through the
full-text index only after `sync_fulltext`.
"""

from pkgatlas.jobs.embeddings import EmbeddingJobStats, generate_embeddings
from pkgatlas.jobs.fulltext_sync import FullTextSyncStats, sync_fulltext

__all__ = [
    "EmbeddingJobStats",
    "FullTextSyncStats",
    "generate_embeddings",
    "sync_fulltext",
]
