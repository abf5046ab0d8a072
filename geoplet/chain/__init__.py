"""On-chain access: contract ABIs, chain client, voucher signing and revert decoding."""
