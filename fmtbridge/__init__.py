# fmtbridge/__init__.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
__version__ = "0.1.0"
