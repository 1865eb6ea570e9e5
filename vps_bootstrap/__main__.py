import sys

from vps_bootstrap.main import main

sys.exit(main())
