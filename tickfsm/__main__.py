"""Allow ``python -m tickfsm``."""

from tickfsm.cli import main

main()
