"""Network module for kvwire."""
