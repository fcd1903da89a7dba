"""Privacy and compliance engine.

Processes data-subject-rights requests, keeps an append-only consent
ledger, and evaluates data-retention policies including the statutory
retention floors that override shorter configured policies.
"""

__version__ = "0.1.0"
