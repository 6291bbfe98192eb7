#!/usr/bin/env python3
"""
Command-line entry point for the subscription engine.

Hands over to the click CLI, which loads configuration from .env.
"""

from subscription_engine.cli import cli


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
