"""Static county maps from ArcGIS FeatureServer layers."""

__version__ = "0.1.0"
