"""Domain Layer: value objects, error taxonomy, ports and events.

Has no dependencies on the core or infrastructure layers.
"""
