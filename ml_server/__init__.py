"""
ML inference server.

Four swappable model executors behind one dispatcher, reachable over HTTP
request/response and a WebSocket stream.
"""

__version__ = "1.0.0"
