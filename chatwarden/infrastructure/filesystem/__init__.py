"""Local file helpers used by exports."""
