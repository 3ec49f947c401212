"""HTML email templates for AutoBlog billing notifications."""

from html import escape

from ...platform.brand import BRAND_NAME, BRAND_PRODUCT_NAME


def _layout(heading: str, body_html: str, cta_label: str, cta_link: str, footer: str) -> str:
    return f"""\
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin:0;padding:0;background-color:#f4f4f7;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,Helvetica,Arial,sans-serif;">
  <table width="100%" cellpadding="0" cellspacing="0" style="background-color:#f4f4f7;padding:40px 20px;">
    <tr>
      <td align="center">
        <table width="600" cellpadding="0" cellspacing="0" style="background-color:#ffffff;border-radius:8px;overflow:hidden;box-shadow:0 2px 8px rgba(0,0,0,0.08);">
          <tr>
            <td style="background-color:#1677ff;padding:32px 40px;text-align:center;">
              <h1 style="margin:0;color:#ffffff;font-size:28px;font-weight:700;letter-spacing:-0.5px;">{BRAND_NAME}</h1>
              <p style="margin:4px 0 0;color:#bae0ff;font-size:14px;">{BRAND_PRODUCT_NAME}</p>
            </td>
          </tr>
          <tr>
            <td style="padding:40px;">
              <h2 style="margin:0 0 16px;color:#1f2937;font-size:22px;">{heading}</h2>
              {body_html}
              <table cellpadding="0" cellspacing="0" style="margin:0 auto 24px;">
                <tr>
                  <td style="background-color:#1677ff;border-radius:6px;text-align:center;">
                    <a href="{cta_link}"
                       style="display:inline-block;padding:14px 32px;color:#ffffff;font-size:16px;font-weight:600;text-decoration:none;">
                      {cta_label}
                    </a>
                  </td>
                </tr>
              </table>
              <hr style="border:none;border-top:1px solid #e5e7eb;margin:24px 0;">
              <p style="margin:0;color:#9ca3af;font-size:13px;text-align:center;">{footer}</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""


def _paragraph(text: str) -> str:
    return f'<p style="margin:0 0 16px;color:#4b5563;font-size:16px;line-height:1.6;">{text}</p>'


def low_credit_warning_html(first_name: str, available_credits: int, upgrade_url: str) -> str:
    noun = "credit" if available_credits == 1 else "credits"
    body = _paragraph(f"Hi {escape(first_name)},") + _paragraph(
        f"You have <strong>{available_credits} {noun}</strong> left. Upgrade your plan or buy a "
        "single post so your content schedule keeps running."
    )
    return _layout(
        heading="You're running low on credits",
        body_html=body,
        cta_label="View plans",
        cta_link=upgrade_url,
        footer=f"You are receiving this because you have an active {BRAND_NAME} account.",
    )


def credit_expiration_warning_html(first_name: str, expiring_credits: int, expires_on: str, dashboard_url: str) -> str:
    noun = "credit expires" if expiring_credits == 1 else "credits expire"
    body = _paragraph(f"Hi {escape(first_name)},") + _paragraph(
        f"<strong>{expiring_credits} plan {noun}</strong> on <strong>{escape(expires_on)}</strong>. "
        "Unused subscription credits do not roll over to the next billing period."
    )
    return _layout(
        heading="Your credits are about to expire",
        body_html=body,
        cta_label="Generate a post",
        cta_link=dashboard_url,
        footer=f"This reminder was sent by {BRAND_NAME} seven days before your credits expire.",
    )


def payment_failed_html(first_name: str, billing_url: str) -> str:
    body = _paragraph(f"Hi {escape(first_name)},") + _paragraph(
        "We couldn't process the latest payment for your subscription. Your existing credits stay "
        "available, but please update your payment method to keep your plan active."
    )
    return _layout(
        heading="Payment failed",
        body_html=body,
        cta_label="Update payment method",
        cta_link=billing_url,
        footer=f"This notification was sent by {BRAND_NAME} billing.",
    )


def referral_reward_granted_html(first_name: str, reward_value_usd: float, dashboard_url: str) -> str:
    body = _paragraph(f"Hi {escape(first_name)},") + _paragraph(
        f"A referral just earned you <strong>1 free blog post</strong> (worth ${reward_value_usd:.2f}). "
        "Bonus credits are used before your plan allotment and never expire."
    )
    return _layout(
        heading="You earned a free post",
        body_html=body,
        cta_label="Use it now",
        cta_link=dashboard_url,
        footer=f"Thanks for spreading the word about {BRAND_NAME}.",
    )
