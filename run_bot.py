#!/usr/bin/env python3
"""
Token buyer arbitrage runner (same as the ``tokenbuyer-arb`` console script)
"""
import sys

from tokenbuyer_arb.cli import main

if __name__ == "__main__":
    sys.exit(main())
