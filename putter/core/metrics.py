from __future__ import annotations

from prometheus_client import Counter, Histogram

saves_total = Counter("putter_saves_total", "Document save attempts by outcome", ["result"])
save_duration_seconds = Histogram("putter_save_duration_seconds", "Time spent in the exclusive save phase (seconds)")
compression_failures_total = Counter("putter_compression_failures_total", "Compressed variant builds that failed")
document_reads_total = Counter("putter_document_reads_total", "Document bodies served", ["encoding"])
