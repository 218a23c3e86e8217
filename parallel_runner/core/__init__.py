"""
Dispatch core.

- ``dispatcher``: accepts job requests, sends them, tracks them
- ``correlation``: in-flight job table (single resolution point)
- ``timeouts``: per-job deadline timers
- ``transport_selector``: direct publish vs. blob-store staging
- ``router``: worker responses -> correlation table
- ``job_types``: job type protocol, registry and implementations
"""
