"""Configuration loading (.env, YAML, environment) and typed settings."""
