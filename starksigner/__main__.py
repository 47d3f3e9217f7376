"""Allow ``python -m starksigner``."""

from .cli import main

if __name__ == "__main__":
    main()
