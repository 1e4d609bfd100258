# hypr_arch/__main__.py
from hypr_arch.cli import main

if __name__ == "__main__":
    main()
