"""Allow ``python -m androidtv2mqtt``."""

from androidtv2mqtt._cli import main

main()
