#!/usr/bin/env python3
"""Terminal OAuth setup script for Gmail API

Usage:
    python scripts/oauth_setup.py                       # Setup for local-user
    python scripts/oauth_setup.py --user-id <google-sub>
    python scripts/oauth_setup.py --revoke              # Delete stored token

Same as the `inbox-helper-oauth` console script.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from inbox_helper.gmail.oauth_setup import main  # noqa: E402

if __name__ == "__main__":
    main()
