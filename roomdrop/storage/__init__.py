"""
Storage Module - Transfer History

Uses SQLite for a metadata-only log of sent and received transfers.
"""

from .history import TransferHistory, open_history, DIRECTION_SENT, DIRECTION_RECEIVED

__all__ = ['TransferHistory', 'open_history', 'DIRECTION_SENT', 'DIRECTION_RECEIVED']
