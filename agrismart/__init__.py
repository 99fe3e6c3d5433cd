"""AgriSmart AI: crop recommendations and plant disease diagnosis for farmers."""

__version__ = "0.1.0"
