import sys

from chromaburst.cli import main

sys.exit(main())
