from enum import Enum


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    MAPPING_SHEET_SCAN = "mapping_sheet_scan"


class ScanStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    UNDER_REVIEW = "under_review"
    REVIEW_NEW_PROJECT = "review_new_project"
    FAILED = "failed"


class Provider(str, Enum):
    CLAUDE = "claude"
    OPENAI = "openai"
