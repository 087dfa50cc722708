import sys

from skillheal.interfaces.cli import main

sys.exit(main())
