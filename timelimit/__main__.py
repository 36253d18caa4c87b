import sys

from timelimit.cli import main

sys.exit(main())
