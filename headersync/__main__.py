import sys

from headersync.main import main

sys.exit(main())
