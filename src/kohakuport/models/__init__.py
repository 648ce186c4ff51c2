"""Domain dataclasses, enums and API models."""
