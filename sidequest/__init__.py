"""SideQuest core: quest location selection, distance estimation, GPS-gated verification and session adaptation."""

__version__ = "0.1.0"
