"""Entry point for ``python -m binship``."""

from .cli import main

if __name__ == "__main__":
    main()
