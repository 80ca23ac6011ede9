"""Signal consensus, confidence recalibration, trade planning and weight learning."""

__version__ = "1.0.0"
