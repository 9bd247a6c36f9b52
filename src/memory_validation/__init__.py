"""Memory validation engine: confidence scoring, decisions and calibration."""

__version__ = "0.1.0"
