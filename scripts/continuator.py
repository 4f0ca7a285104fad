#!/usr/bin/env python3
"""
CLI: Run continuator from a source checkout without installing it.
Usage:
  python scripts/continuator.py create --id intro --prompt "A lighthouse at dusk"
  python scripts/continuator.py continue --from intro --id intro-2 --prompt "The camera drifts out to sea"
  python scripts/continuator.py flow --id storm --prompt "Clouds gather" --prompt "Rain falls"
  python scripts/continuator.py list
"""
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from continuator.cli import main

if __name__ == "__main__":
    sys.exit(main())
