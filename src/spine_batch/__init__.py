"""spine-batch: resumable, multi-process batch processing.

A batch is an ordered list of sets; each set is a durable queue of named
operations.  A supervisor persists the batch and keeps spawning short-lived
worker processes until every operation has completed, so a long job survives
memory growth, crashes, and restarts.

Quick start::

    from spine_batch.batch import BatchBuilder, BatchSupervisor

See ``spine_batch.batch`` for the engine and ``spine_batch.cli`` for the
``spine-batch`` command.
"""

__version__ = "0.1.0"
