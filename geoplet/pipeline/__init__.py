"""Payment-to-mint pipeline: server-side voucher issuance and client-side submission."""
