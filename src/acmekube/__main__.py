"""Allow ``python -m acmekube``."""

from acmekube.cli.main import main

main()
