"""zoomtiler - Convert large images into Zoomify tile pyramids."""

__version__ = "0.1.0"
