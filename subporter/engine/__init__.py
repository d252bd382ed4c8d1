"""Engine components: record algebra, listing extraction and the import job."""

from .extraction import ExtractionEngine, ExtractionReport
from .job import JobController, JobPhase, JobResult, JobState, MemoryPhaseSignal, Outcomes
from .records import ComparisonResult, MergeResult, Record, RecordFilter, compare, filter_records, merge

__all__ = [
    "ComparisonResult",
    "ExtractionEngine",
    "ExtractionReport",
    "JobController",
    "JobPhase",
    "JobResult",
    "JobState",
    "MemoryPhaseSignal",
    "MergeResult",
    "Outcomes",
    "Record",
    "RecordFilter",
    "compare",
    "filter_records",
    "merge",
]
