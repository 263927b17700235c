"""
dex - Venues and the quote gateway.
"""

from dex.gateway import QuoteGateway
from dex.venue import LocalVenueQuoter, Venue, VenueQuoter

__all__ = ["LocalVenueQuoter", "QuoteGateway", "Venue", "VenueQuoter"]
