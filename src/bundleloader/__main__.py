"""Allow ``python -m bundleloader``."""

from bundleloader.cli import main

if __name__ == "__main__":
    main()
