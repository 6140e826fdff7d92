from .driver import IngestResult, ingest_capture, ingest_lines
from .normalizer import EnvelopeNormalizer
from .reader import iter_log_records
from .string_table import StringTable

__all__ = [
    "EnvelopeNormalizer",
    "IngestResult",
    "StringTable",
    "ingest_capture",
    "ingest_lines",
    "iter_log_records",
]
