"""Entry point for running CLI as module.

Usage:
    python -m parlance.interfaces.cli estimate "some text"
    python -m parlance.interfaces.cli inspect chat-1
"""

if __name__ == "__main__":
    from parlance.interfaces.cli.app import main
    main()
