"""Multi-carrier shipping gateway: rates, labels and tracking across USPS, FedEx, UPS, DHL and Canada Post."""

__version__ = "1.0.0"
