"""Enable running the keeper as a module: python -m claude_keepalive."""

from claude_keepalive.cli import main

if __name__ == "__main__":
    main()
