"""Domain models: identifiers, fetched messages and command pipeline types."""
