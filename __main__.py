"""
Entry point for running DuoChat from a source checkout (``python .``).
"""

from DuoChat.__main__ import main

if __name__ == '__main__':
    main()
