"""
Portfolio Contact App

Handles contact form submissions from the portfolio website:
- Validation of name, email, subject and message
- Delivery to the owner via SendGrid, falling back to Gmail SMTP
- Best-effort auto-reply to the submitter
"""
