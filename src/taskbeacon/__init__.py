"""taskbeacon: recurring tasks, reminder notifications and the sweeps that deliver them."""

__version__ = "0.1.0"
