"""x402 USDC payments: header handling and the Onchain.fi facilitator client."""
