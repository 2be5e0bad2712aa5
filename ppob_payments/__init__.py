"""PPOB transaction lifecycle service for the Digiflazz gateway."""

__version__ = "0.1.0"
