import sys

from clearnear.main import main

if __name__ == "__main__":
    sys.exit(main())
