"""Allow running as `python -m site_blocker`."""

from .cli import main

if __name__ == "__main__":
    main()
