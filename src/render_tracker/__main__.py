import sys

from render_tracker.console import main

sys.exit(main())
