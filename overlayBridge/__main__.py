"""
Overlay Bridge Entry Point

Run the bridge as a standalone application:
    python -m overlayBridge [--config converter.conf.json] [--log-level DEBUG]

Property of Uncompromising Sensors LLC.
"""

import sys
from .main import main

if __name__ == '__main__':
    sys.exit(main())
