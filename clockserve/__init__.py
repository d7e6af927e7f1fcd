"""Mini program back end: check-ins, goods, users, reminder clocks and weather alerts."""

__version__ = "0.1.0"