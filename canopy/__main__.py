#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
canopy/__main__.py
==================

Allows ``python -m canopy <command> [options] SCRIPT``.

Pipeline
--------

    script source
        │
        ▼
    ┌──────────┐
    │  Parser   │   parsimonious grammar → Tree
    └────┬─────┘
         │
         ▼
    ┌──────────────┐
    │ Instrumenter  │   hooks around every branch point
    └────┬─────────┘
         │
         ▼
    ┌──────────────┐
    │  Code         │   Tree → Python source
    │  Generator    │
    └────┬─────────┘
         │
         ▼
    ┌──────────────┐
    │  Runtime      │   executes, hooks record outcomes
    └────┬─────────┘
         │
         ▼
    coverage report
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
