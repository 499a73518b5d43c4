"""
API entrypoint.

Operator notes:
- Keep this file small; runtime configuration is read from the environment
  (or .env) by namhatta.config when namhatta.main is imported.
- If this file crashes, the error should be immediately obvious to the operator.
"""

import logging
import sys

from namhatta.main import run


def main() -> None:
    try:
        run()
    except Exception:
        logging.basicConfig(level=logging.ERROR)
        logging.exception("API failed to start.")
        print("\nAPI failed to start.")
        print("   See error above. Most common causes:")
        print("   - Database path/URL invalid (DATABASE_URL or DB_PATH)")
        print("   - Port already in use (PORT)")
        print("   - Missing dependencies / broken venv\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
