"""Allow ``python -m fgm`` execution."""

from fgm.cli.main import main

main()
