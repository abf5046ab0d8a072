"""FastAPI service for voucher issuance, generation storage, gallery and admin outreach."""
