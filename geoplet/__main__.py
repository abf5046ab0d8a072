"""
Allow the geoplet package to be executed as a module.

    python -m geoplet --port 8000
"""

from geoplet.main import main

if __name__ == "__main__":
    main()
