import sys

from nxmod.cli import main

sys.exit(main())
