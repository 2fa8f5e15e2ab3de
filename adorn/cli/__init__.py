"""
Adorn CLI.

Usage:
    adorn manifest app.py
    adorn manifest app.py --openapi
    python -m adorn.cli manifest app.py
"""

__cli_name__ = "adorn"


def main():
    """Wrapper to avoid eager import of __main__ which causes warnings with -m."""
    from .__main__ import main as _main
    return _main()
