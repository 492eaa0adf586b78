#!/usr/bin/env python3
"""
Conversation relay startup script.

Runs the relay from the project root so `.env` is picked up, with the same
settings as `python -m conversation_relay.main`.
"""

import os
import sys
from pathlib import Path


def main():
    """Start the conversation relay with uvicorn."""
    project_root = Path(__file__).parent
    os.chdir(project_root)

    try:
        from conversation_relay.main import run

        run()
    except KeyboardInterrupt:
        print("\nRelay stopped by user")
    except Exception as e:
        print(f"Error starting relay: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
