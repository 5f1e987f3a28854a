"""Services package for Provisio."""
