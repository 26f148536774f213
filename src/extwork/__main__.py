# src/extwork/__main__.py
import sys

from .app import main

sys.exit(main())
