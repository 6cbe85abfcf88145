"""
Jobs layer: scheduling, lifecycle and the per-type pipelines.

- scheduler: in-process priority queue with a concurrency cap
- state_machine: legal status transitions, write-then-notify
- executor: runs one job through its strategy
- ingestion / analysis: shared per-unit stages
- strategies: one pipeline per job type
"""

from grant_crawler.jobs.executor import PipelineExecutor
from grant_crawler.jobs.scheduler import JobScheduler
from grant_crawler.jobs.state_machine import JobStateMachine

__all__ = [
    "JobScheduler",
    "JobStateMachine",
    "PipelineExecutor",
]
