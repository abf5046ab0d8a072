"""
Geoplet - turn a Warplet NFT into on-chain geometric art.

This package provides the backend service and the client-side mint flow:
- x402 USDC payment verification and EIP-712 mint voucher issuance
- Payment-to-mint pipeline with gas estimation fallback
- Marketplace metadata normalization and gallery pagination
- Farcaster outreach for users who generated but never minted
"""

__version__ = "0.1.0"
__author__ = "Geoplet Team"
