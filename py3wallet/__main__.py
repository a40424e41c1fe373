"""Allow running as ``python -m py3wallet``."""

from .cli import main

if __name__ == "__main__":
    main()
