"""Run the zarf-deploy command line tool with `python -m zarf_deploy`."""

from .tool.zarf_deploy import main

if __name__ == "__main__":
    main()
