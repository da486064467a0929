# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Canopy Shift
============

Canopy mean-shift clustering on Spark with a compact binary record format.
"""

__version__ = "0.1.0"
__all__ = ["clusterer"]
