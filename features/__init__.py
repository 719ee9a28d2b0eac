"""
Features package — each sub-package encapsulates a self-contained feature.

Convention:
  features/<feature_name>/
    __init__.py      — public API re-exports
    models.py        — data models specific to this feature (runs)
    tracker.py       — stage ledger for one run (runs)
    sink.py          — notification transports (notify)
    reporter.py      — progress bar and log helpers (notify)
"""
