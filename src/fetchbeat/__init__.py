"""
fetchbeat: the scheduling core behind Daily Fetch summaries.

Every process runs the tick loop; a store-backed lease decides which one
actually scans users' scheduled summaries and enqueues the due ones.

Layout::

    core/            settings, logging, errors, store, job models
    core/scheduling/ lease lock, due evaluation, tick loop, health scoring
    execution/       circuit breaker, queue, ledger, retrying saves, pipeline
    api/             FastAPI admin surface
    cli/             Typer command line
"""

__version__ = "0.1.0"
