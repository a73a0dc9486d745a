#!/usr/bin/env python3
"""
Convenience entry point for running bookingengine directly.

Usage: python booking_engine.py [command] [options]
"""

from bookingengine.cli.app import app

if __name__ == "__main__":
    app()
