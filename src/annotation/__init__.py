"""
Result annotation for the review screen.
"""

from .annotator import ImageAnnotator, format_label, format_summary

__all__ = ["ImageAnnotator", "format_label", "format_summary"]
