import sys

from flutter_mate.cli.main import main

sys.exit(main())
