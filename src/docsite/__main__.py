"""Allow ``python -m docsite``."""

from docsite.cli import main

main()
