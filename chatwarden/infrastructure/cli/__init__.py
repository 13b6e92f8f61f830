"""Console presentation: rich display and the console response channel."""
