"""childproc 入口点。

支持: python -m childproc
"""

from .app import main

if __name__ == "__main__":
    main()
