"""
Fixpanic CLI
------------
Entry point for ``python -m fixpanic``.
"""
from .cli import main

if __name__ == "__main__":
    main()
