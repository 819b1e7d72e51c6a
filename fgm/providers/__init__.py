"""Concrete implementations of the interfaces in :mod:`fgm.interfaces`."""
