# utils/email.py
import requests

import config

BREVO_URL = "https://api.brevo.com/v3/smtp/email"


def send_payment_confirmation_email(to_email: str, order_id: str, amount, currency: str):
     if not config.BREVO_API_KEY:
          raise Exception("BREVO_API_KEY is not set")

     response = requests.post(
          BREVO_URL,
          headers={
               "api-key": config.BREVO_API_KEY,
               "Content-Type": "application/json",
          },
          json={
               "sender": {"name": config.MAIL_SENDER_NAME, "email": config.MAIL_SENDER_EMAIL},
               "to": [{"email": to_email}],
               "subject": f"Payment confirmed for order {order_id}",
               "htmlContent": f"""
                    <h2>Payment received</h2>
                    <p>We received your payment of <strong>{amount} {currency}</strong>
                    for order <strong>{order_id}</strong>.</p>
                    <p>Your order is now being processed.</p>
               """,
          },
          timeout=10,
     )
     if response.status_code not in (200, 201):
          raise Exception(f"Brevo error: {response.text}")
