"""Marketplace data sources (Rarible, Alchemy) and the shared NFT metadata shape."""
