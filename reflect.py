#!/usr/bin/env python3
"""Run reflect from a source checkout.

Reflect reads recent agent sessions and edits a behavioral markdown file
(AGENTS.md, SOUL.md, ...) so the corrections users keep making stick:
    python reflect.py run ~/AGENTS.md --dry-run

Once installed, the same commands are available as ``reflect``.
"""

import sys
from reflect.cli import main

if __name__ == "__main__":
    sys.exit(main())
