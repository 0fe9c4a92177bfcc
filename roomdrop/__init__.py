"""
roomdrop - Room-based file relay

Two peers join the same room token on a relay server. The sender streams a
file as numbered chunks, the relay forwards every frame to the other room
members, and the receiver reassembles the chunks in sequence order.
"""

__version__ = "1.0.0"
