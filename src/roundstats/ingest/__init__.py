"""
RoundStats Ingestion - Turning server logs into stored round records.

This module contains:
- logfiles: Log and checkpoint file naming and line reading
- checkpoint: Per-server line offsets
- sequencer: Match id and match number assignment
- parser: Structured stat block state machine
- pipeline: One ingestion run per server
- scheduler: Interval runs with per-server in-flight guard
- watcher: File system monitoring for immediate runs
"""

__all__: list[str] = []
