"""Processing jobs -- schemas, persistence, progress reporting, and recovery.

Provides the Job lifecycle used by every trigger mechanism: the gateway
inserts pending jobs, the pipeline runner claims and advances them through
fixed checkpoints, and the stale job reaper returns orphaned runs to the
queue.
"""
