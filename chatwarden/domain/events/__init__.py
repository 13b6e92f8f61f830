"""Domain Event definitions.

Emitted by the rate limiter, retry policy and paginated fetcher so that
observers can follow deferrals, retries and fetch progress.
"""
