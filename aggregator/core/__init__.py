from .listing import JobListing, SourceKind, EmploymentType, SalaryRange, VisaSponsorship
from .normalize import normalize, normalize_batch
from .dedupe import fingerprint, content_hash, deduplicate_jobs
from .visa import VisaClassifier, ClassificationResult, load_signal_table
from .schedule import DailyRule, parse_recurrence, next_fire_time

__all__ = [
    "JobListing",
    "SourceKind",
    "EmploymentType",
    "SalaryRange",
    "VisaSponsorship",
    "normalize",
    "normalize_batch",
    "fingerprint",
    "content_hash",
    "deduplicate_jobs",
    "VisaClassifier",
    "ClassificationResult",
    "load_signal_table",
    "DailyRule",
    "parse_recurrence",
    "next_fire_time",
]
