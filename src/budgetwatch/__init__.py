"""budgetwatch: budget alert evaluation, deduplication and delivery."""

__version__ = "0.1.0"
