"""Entry point for running ClientLens as a module.

Usage:
    python -m clientlens validate-config
    python -m clientlens --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from clientlens.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
