"""
Browser-based background removal tool.

Exposes reusable primitives for managing the segmentation model, running
removal on uploaded images, and serving the FastAPI application and UI.
"""
