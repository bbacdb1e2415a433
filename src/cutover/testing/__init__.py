"""
Test utilities for cutover.

Components:
    CutoverTestHarness: Orchestrator wired to in-memory infrastructure
    FakeSubsystem: Adapter that records calls and fails on request
    ScriptedProbe: Probe replaying a fixed outcome sequence
    RecordingSink: Reporting sink keeping every summary

Example:
    >>> from cutover.testing import CutoverTestHarness
    >>>
    >>> harness = CutoverTestHarness()
    >>> result = await harness.orchestrator.execute("cache", ExecuteOptions(dry_run=True))
    >>> harness.mutation_count
    0

Note:
    This module is intended for test code only. It should not be imported
    in production code paths.
"""

from cutover.testing.fakes import AdapterCall, FakeSubsystem, RecordingSink, ScriptedProbe
from cutover.testing.harness import FAST_CONFIG, LIVE_CONFIG, TARGET_CONFIG, CutoverTestHarness

__all__ = [
    # Harness
    "CutoverTestHarness",
    "LIVE_CONFIG",
    "TARGET_CONFIG",
    "FAST_CONFIG",
    # Fakes
    "AdapterCall",
    "FakeSubsystem",
    "ScriptedProbe",
    "RecordingSink",
]
