"""
Entry point for running the relay as a module.

Usage:
    python -m castpay_relay
"""

from castpay_relay.cli import main

if __name__ == "__main__":
    main()
