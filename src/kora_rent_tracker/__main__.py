"""Allow ``python -m kora_rent_tracker``."""

import sys

from kora_rent_tracker.cli import main

sys.exit(main())
