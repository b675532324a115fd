"""Built-in manifests shipped as package data."""
