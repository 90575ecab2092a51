"""Multi-hop swap routing, execution and monitoring for constant-product DEX pools"""

__version__ = "1.0.0"
