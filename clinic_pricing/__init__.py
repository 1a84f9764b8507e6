"""Medical service pricing and insurance coverage calculation engine."""

__version__ = "0.1.0"
