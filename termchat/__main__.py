"""Allow ``python -m termchat``."""

from .cli import main

if __name__ == "__main__":
    main()
