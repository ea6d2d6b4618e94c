"""
Operation handlers mapping gateway calls onto downstream resources.
"""

from restplugin.handlers.base import BaseApiHandler
from restplugin.handlers.books import BookEvent, BookEventPatch, BooksHandler

__all__ = ["BaseApiHandler", "BookEvent", "BookEventPatch", "BooksHandler"]
