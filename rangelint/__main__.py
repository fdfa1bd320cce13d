"""Allow ``python -m rangelint``."""

from rangelint.cli import main

raise SystemExit(main())
