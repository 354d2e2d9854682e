import sys

from snag.cli.app import main


def start():
    sys.exit(main())
