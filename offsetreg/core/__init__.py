"""Configuration, errors and logging shared across offsetreg."""
