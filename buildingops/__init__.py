"""Building maintenance ticketing service."""
