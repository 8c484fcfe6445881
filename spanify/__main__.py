"""``python -m spanify`` support."""

from spanify.main import main

raise SystemExit(main())
