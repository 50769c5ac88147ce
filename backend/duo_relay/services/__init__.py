"""Relay domain services: session lifecycle and event forwarding.

This package contains the transport-free core that Socket.IO handlers and
HTTP routes call into, keeping transport concerns separated from session
bookkeeping.
"""
