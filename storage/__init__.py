"""
Storage package: shared HTTP retry/backoff policy.
"""
