"""Engine-wide configuration, constants and errors."""
