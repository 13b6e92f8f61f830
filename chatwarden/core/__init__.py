"""Core Application Layer: Orchestrates use cases and application logic.

Holds the command registry and its guards, the built-in command handlers,
and the ChatService that routes every platform call through the rate
limiter and retry policy.
"""
