"""Main entry point when executing chatwarden as a package.

This allows running the package using python -m chatwarden.
"""

from chatwarden.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
