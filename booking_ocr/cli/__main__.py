"""Allow ``python -m booking_ocr.cli`` execution."""

import sys

from booking_ocr.cli.process import main

sys.exit(main())
