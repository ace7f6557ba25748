"""Allow ``python -m mailsense``."""

from mailsense.cli import main

if __name__ == "__main__":
    main()
