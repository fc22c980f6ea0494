"""
Resubmitter: rate-limit-aware bulk resubmission of Logic Apps Standard workflow runs.

Drives many previously executed runs back through the Azure management API
(or through a trigger's public callback URL) with classified retries,
bounded concurrency and cooperative cancellation.
"""

__version__ = "0.1.0"
