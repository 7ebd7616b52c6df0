"""iCal booking import and occupancy analytics for rental listings."""

__version__ = "0.1.0"
