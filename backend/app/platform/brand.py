"""Centralized brand configuration for user-facing copy."""

BRAND_NAME = "AutoBlog"
BRAND_DOMAIN = "automatemyblog.com"
BRAND_PRODUCT_NAME = "Automated Content Platform"
BRAND_APP_DESCRIPTION = "Credit ledger and billing backend for AI content generation"

def brand_email_from() -> str:
    return f"{BRAND_NAME} <noreply@{BRAND_DOMAIN}>"
