"""Entry point for `python -m eventrouter`.

Usage:
    python -m eventrouter
    uv run python -m eventrouter
"""

from __future__ import annotations

import asyncio

from eventrouter.app import main

asyncio.run(main())
