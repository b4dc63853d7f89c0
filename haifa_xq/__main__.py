import sys

from .xq_cli import main

sys.exit(main())
