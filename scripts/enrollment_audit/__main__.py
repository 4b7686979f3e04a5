import sys

from scripts.enrollment_audit.cli import main

sys.exit(main())
