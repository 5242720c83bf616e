"""Configuration module for kvwire."""
