import sys

from geo_resolver.cli import main

sys.exit(main())
