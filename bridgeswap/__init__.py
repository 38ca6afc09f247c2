"""
Bridge-asset currency swap engine.
Finds and executes cross-exchange swaps routed through a transferable bridge asset.
"""

__version__ = "0.1.0"
