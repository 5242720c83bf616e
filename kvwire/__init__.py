"""
kvwire: Networked Key-Value Store

A single-process key-value server built with Python asyncio, speaking a
line-oriented text protocol or a length-prefixed binary protocol over
raw TCP sockets.
"""

__version__ = "1.0.0"
