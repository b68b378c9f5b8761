"""Core domain package for budgetwatch.

Core contains threshold evaluation, fingerprinting, the dispatch ledger,
token signing, composition and bulk dispatch without any SMTP, Telegram or
storage-specific code, keeping the business logic portable.
"""
