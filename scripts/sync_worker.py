#!/usr/bin/env python
"""
Run a standalone sync worker.

Usage:
    python scripts/sync_worker.py

Environment:
    DATABASE_URL, JOB_* tuning knobs (see app/core/config.py),
    GOOGLE_MERCHANT_ACCESS_TOKEN / GOOGLE_BUSINESS_ACCESS_TOKEN,
    SYNC_WORKER_LOG_LEVEL (default INFO)
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.worker import main  # noqa: E402

if __name__ == "__main__":
    asyncio.run(main())
