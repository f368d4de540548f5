"""Rendering proxy: renders a page in a headless browser and serves it embeddable."""
