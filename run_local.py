#!/usr/bin/env python3
"""
Run placepugs over plain HTTP for local testing/development, using the
images directory next to this script unless IMAGE_ROOT is set.
"""

import os
import sys
from pathlib import Path

# Set up paths
BASE_DIR = Path(__file__).parent
os.environ.setdefault('IMAGE_ROOT', str(BASE_DIR / 'images'))

# Import and run
from app import load_config, main

if __name__ == '__main__':
    config = load_config()
    config['protocol'] = 'http'

    print("="*60)
    print("placepugs - Placeholder Image Server")
    print("="*60)
    print(f"Image directory: {config['image_root']} ({config['variant']})")
    print()
    print(f"Try: http://localhost:{config['port']}/400/300")
    print()
    print("Starting server...")
    print("="*60)

    sys.exit(main(config))
