"""chatwarden: owner-only chat account automation.

Resilient access to a rate-limited chat platform API (token bucket
limiting, classified retries, cursor pagination) behind a guarded
command pipeline.
"""

__version__ = "0.1.0"
