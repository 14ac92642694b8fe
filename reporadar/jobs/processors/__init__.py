"""Job processors package.

Processor contract:
    async def process(job: JobContext) -> dict:
        - job: id, kind, attempt, payload, report_progress(), raise_if_cancelled()
        - Returns: Result dict stored in job.result on success
        - Raise PermanentJobError subclasses for failures retrying can't fix
"""

from reporadar.jobs.processors.base import JobContext, Processor
from reporadar.jobs.processors.batch_analysis import BatchAnalysisProcessor
from reporadar.jobs.processors.export import ExportProcessor

__all__ = ["JobContext", "Processor", "BatchAnalysisProcessor", "ExportProcessor"]
